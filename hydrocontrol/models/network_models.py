"""
network_models.py — Pydantic schemas for network, metrics and event endpoints.
==============================================================================
"""

from datetime import datetime
from typing import Optional

from hydrocontrol.core.entities import EventType, NetworkStatus

from .base_models import CamelModel


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class NetworkResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    source_file: str
    node_count: int
    pipe_count: int
    pump_count: int
    status: NetworkStatus
    created_at: datetime

    model_config = {**CamelModel.model_config, "json_schema_extra": {
        "examples": [{
            "id": 1, "name": "Main Distribution Network", "sourceFile": "net1.inp",
            "nodeCount": 45, "pipeCount": 62, "pumpCount": 16, "status": "active",
        }]
    }}


class MetricsResponse(CamelModel):
    """One hydraulic simulation result."""
    id: int
    network_id: int
    timestamp: datetime
    average_pressure: float
    flow_rate: float
    power_consumption: float
    water_quality: float
    energy_efficiency: float


class EventResponse(CamelModel):
    id: int
    network_id: int
    type: EventType
    title: str
    description: Optional[str] = None
    acknowledged: bool
    timestamp: datetime
