"""
hydrocontrol — Process-control coordinator for a water distribution network.
"""

__version__ = "1.0.0"
