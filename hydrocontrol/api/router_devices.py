"""
router_devices.py — API endpoints for pump / valve control.
===========================================================
Prefix: /api  (pumps, valves, devices, apply-optimal, emergency-shutdown)
"""

from fastapi import APIRouter, Depends

from hydrocontrol.core.entities import DeviceKind
from hydrocontrol.models.device_models import (
    DeviceResponse, DeviceUpdateResponse, OptimalControlsResponse, PumpResponse,
    PumpUpdateRequest, ShutdownResponse, ValveResponse, ValveUpdateRequest,
    device_response, optimal_controls_response, shutdown_response, update_response,
)
from hydrocontrol.services.control_coordinator import ControlCoordinator

from .deps import get_coordinator

router = APIRouter(prefix="/api", tags=["Devices / Control"])


@router.get("/networks/{network_id}/pumps", response_model=list[PumpResponse], summary="List pumps")
async def list_pumps(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return [device_response(d) for d in await coordinator.list_devices(network_id, DeviceKind.PUMP)]


@router.get("/networks/{network_id}/valves", response_model=list[ValveResponse], summary="List valves")
async def list_valves(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return [device_response(d) for d in await coordinator.list_devices(network_id, DeviceKind.VALVE)]


@router.get("/devices/{device_id}", response_model=DeviceResponse, summary="Get a pump or valve")
async def get_device(device_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return device_response(await coordinator.get_device(device_id))


@router.put("/pumps/{device_id}", response_model=DeviceUpdateResponse, summary="Update a pump")
async def update_pump(
    device_id: int,
    req: PumpUpdateRequest,
    coordinator: ControlCoordinator = Depends(get_coordinator),
):
    """
    Partially update a pump.  Turning a pump off drives its speed to 0;
    a non-zero speed on a pump that is (or becomes) off is rejected.

    **Example request:**
    ```json
    {"speed": 75}
    ```
    """
    return update_response(await coordinator.update_device(device_id, req.to_update()))


@router.put("/valves/{device_id}", response_model=DeviceUpdateResponse, summary="Update a valve")
async def update_valve(
    device_id: int,
    req: ValveUpdateRequest,
    coordinator: ControlCoordinator = Depends(get_coordinator),
):
    return update_response(await coordinator.update_device(device_id, req.to_update()))


# ---------------------------------------------------------------------------
# Network-wide control
# ---------------------------------------------------------------------------

@router.post(
    "/networks/{network_id}/apply-optimal",
    response_model=OptimalControlsResponse,
    summary="Apply the policy's proposed set-points",
    response_description="Devices updated and devices that failed, listed separately",
)
async def apply_optimal_controls(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    """
    Ask the DRL policy for a new set-point per running device and apply each.

    A failure on one device does not stop the others; `partial` is true
    when some actions were applied and some failed.
    """
    return optimal_controls_response(await coordinator.apply_optimal_controls(network_id))


@router.post(
    "/networks/{network_id}/emergency-shutdown",
    response_model=ShutdownResponse,
    summary="Stop every pump in the network",
)
async def emergency_shutdown(network_id: int, coordinator: ControlCoordinator = Depends(get_coordinator)):
    return shutdown_response(await coordinator.emergency_shutdown(network_id))
