"""
device_models.py — Pydantic schemas for pump / valve control endpoints.
=======================================================================
Request bodies carry no range constraints: the ControlCoordinator owns
device validation so HTTP and in-process callers see the same errors.
"""

from typing import Optional, Union

from pydantic import Field

from hydrocontrol.core.entities import (
    Device, DeviceKind, Pump, PumpStatus, PumpUpdate, Valve, ValveStatus, ValveUpdate,
)

from .base_models import CamelModel
from .network_models import EventResponse


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PumpUpdateRequest(CamelModel):
    """PUT /api/pumps/{id} — any subset of fields."""
    status: Optional[PumpStatus] = None
    speed: Optional[float] = Field(default=None, description="Percent of rated speed (0–100)")
    name: Optional[str] = None

    model_config = {**CamelModel.model_config, "json_schema_extra": {
        "examples": [{"speed": 75}, {"status": "off"}]
    }}

    def to_update(self) -> PumpUpdate:
        return PumpUpdate(status=self.status, speed=self.speed, name=self.name)


class ValveUpdateRequest(CamelModel):
    """PUT /api/valves/{id} — any subset of fields."""
    status: Optional[ValveStatus] = None
    position: Optional[float] = Field(default=None, description="Percent open (0–100)")
    name: Optional[str] = None

    def to_update(self) -> ValveUpdate:
        return ValveUpdate(status=self.status, position=self.position, name=self.name)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class PumpResponse(CamelModel):
    id: int
    network_id: int
    kind: DeviceKind = DeviceKind.PUMP
    name: str
    external_ref: str
    status: PumpStatus
    speed: float
    power: float
    flow: float
    head: float


class ValveResponse(CamelModel):
    id: int
    network_id: int
    kind: DeviceKind = DeviceKind.VALVE
    name: str
    external_ref: str
    status: ValveStatus
    position: float
    setting: float


DeviceResponse = Union[PumpResponse, ValveResponse]


class SyncErrorResponse(CamelModel):
    error: str
    detail: str
    changed: bool


class DeviceUpdateResponse(CamelModel):
    """The stored device; `engineSynced` is false when the hydraulic push failed."""
    device: DeviceResponse
    engine_synced: bool
    sync_error: Optional[SyncErrorResponse] = None


class ActionFailureResponse(CamelModel):
    device_id: int
    error: str
    detail: str


class OptimalControlsResponse(CamelModel):
    network_id: int
    applied: list[DeviceUpdateResponse]
    failed: list[ActionFailureResponse]
    partial: bool


class ShutdownResponse(CamelModel):
    network_id: int
    stopped: list[PumpResponse]
    sync_failures: list[str]
    event: EventResponse


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------

def device_response(device: Device) -> DeviceResponse:
    if isinstance(device, Pump):
        return PumpResponse.model_validate(device)
    if isinstance(device, Valve):
        return ValveResponse.model_validate(device)
    raise TypeError(f"Unknown device type {type(device).__name__}")


def update_response(result) -> DeviceUpdateResponse:
    sync_error = None
    if result.sync_error is not None:
        sync_error = SyncErrorResponse(**result.sync_error.to_dict())
    return DeviceUpdateResponse(
        device=device_response(result.device),
        engine_synced=result.engine_synced,
        sync_error=sync_error,
    )


def optimal_controls_response(result) -> OptimalControlsResponse:
    return OptimalControlsResponse(
        network_id=result.network_id,
        applied=[update_response(r) for r in result.applied],
        failed=[ActionFailureResponse.model_validate(f) for f in result.failed],
        partial=result.partial,
    )


def shutdown_response(result) -> ShutdownResponse:
    return ShutdownResponse(
        network_id=result.network_id,
        stopped=[PumpResponse.model_validate(p) for p in result.stopped],
        sync_failures=result.sync_failures,
        event=EventResponse.model_validate(result.event),
    )
