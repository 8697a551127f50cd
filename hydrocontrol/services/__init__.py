"""
services — Scheduler, coordinator and broadcaster built on the Repository.
"""
