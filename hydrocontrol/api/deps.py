"""
deps.py — FastAPI dependencies resolving the per-app service container.
"""

from fastapi import Depends
from fastapi.requests import HTTPConnection

from hydrocontrol.services.container import Services
from hydrocontrol.services.control_coordinator import ControlCoordinator
from hydrocontrol.services.training_scheduler import TrainingScheduler


def get_services(connection: HTTPConnection) -> Services:
    return connection.app.state.services


def get_coordinator(services: Services = Depends(get_services)) -> ControlCoordinator:
    return services.coordinator


def get_scheduler(services: Services = Depends(get_services)) -> TrainingScheduler:
    return services.scheduler
