"""
router_networks.py — API endpoints for networks, simulation, metrics and events.
================================================================================
Prefix: /api/networks  (and /api/events)
"""

from fastapi import APIRouter, Depends, Query

from hydrocontrol.models.network_models import EventResponse, MetricsResponse, NetworkResponse
from hydrocontrol.services.control_coordinator import MAX_HISTORY_HOURS, ControlCoordinator

from .deps import get_coordinator

router = APIRouter(prefix="/api", tags=["Networks"])


@router.get("/networks", response_model=list[NetworkResponse], summary="List all networks")
async def list_networks(coordinator: ControlCoordinator = Depends(get_coordinator)):
    return [NetworkResponse.model_validate(n) for n in await coordinator.list_networks()]


@router.get("/networks/{network_id}", response_model=NetworkResponse, summary="Get one network")
async def get_network(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return NetworkResponse.model_validate(await coordinator.get_network(network_id))


@router.post(
    "/networks/{network_id}/load",
    response_model=NetworkResponse,
    summary="Load the network into the hydraulic engine",
)
async def load_network(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    """Build the engine model from the stored devices and mark the network active."""
    return NetworkResponse.model_validate(await coordinator.load_network(network_id))


# ---------------------------------------------------------------------------
# Simulation & metrics
# ---------------------------------------------------------------------------

@router.post(
    "/networks/{network_id}/simulate",
    response_model=MetricsResponse,
    summary="Run a full hydraulic simulation",
    response_description="The metrics sample appended by this run",
)
async def run_simulation(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    """
    Simulate the network from its current pump and valve settings.

    On engine failure nothing is stored and the response is a 502
    `SimulationFailed` error.
    """
    return MetricsResponse.model_validate(await coordinator.run_simulation(network_id))


@router.get(
    "/networks/{network_id}/metrics/latest",
    response_model=MetricsResponse,
    summary="Latest metrics sample",
)
async def latest_metrics(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return MetricsResponse.model_validate(await coordinator.latest_metrics(network_id))


@router.get(
    "/networks/{network_id}/metrics/history",
    response_model=list[MetricsResponse],
    summary="Metrics samples from the last N hours, oldest first",
)
async def metrics_history(
    network_id: int,
    hours: float = Query(default=24, gt=0, le=MAX_HISTORY_HOURS, description="Look-back window in hours"),
    coordinator: ControlCoordinator = Depends(get_coordinator),
):
    samples = await coordinator.metrics_history(network_id, hours)
    return [MetricsResponse.model_validate(m) for m in samples]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@router.get(
    "/networks/{network_id}/events",
    response_model=list[EventResponse],
    summary="Most recent events, newest first",
)
async def recent_events(
    network_id: int,
    limit: int = Query(default=10, description="Maximum number of events"),
    coordinator: ControlCoordinator = Depends(get_coordinator),
):
    events = await coordinator.recent_events(network_id, limit)
    return [EventResponse.model_validate(e) for e in events]


@router.post("/events/{event_id}/acknowledge", response_model=EventResponse, summary="Acknowledge an event")
async def acknowledge_event(event_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return EventResponse.model_validate(await coordinator.acknowledge_event(event_id))
