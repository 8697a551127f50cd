"""
core — Domain records, the in-memory Repository and the engine collaborators.
=============================================================================
Convenience re-exports so other modules can do:
    from hydrocontrol.core import Repository, SimulatedHydraulicEngine
"""

from .entities import Device, Event, MetricsSample, Network, Pump, TrainingState, Valve
from .errors import CoordinatorError, EngineError, PolicyError
from .hydraulics import HydraulicEngine, SimulatedHydraulicEngine
from .policy import PolicyEngine, SimulatedPolicyEngine
from .repository import Repository
