"""
entities.py — Domain records owned by the Repository
=====================================================
Every record is a frozen dataclass: the Repository hands out immutable
values and applies partial updates with `dataclasses.replace`, so no
mutable reference to stored state ever escapes it.

Device is a closed tagged variant {Pump, Valve}.  Both share the
0–100 control value and the "stopped ⇒ control value 0" rule; each kind
carries its own read-only telemetry.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


CONTROL_MIN = 0.0
CONTROL_MAX = 100.0


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NetworkStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class PumpStatus(str, Enum):
    ON = "on"
    OFF = "off"


class ValveStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    ACTIVE = "active"


class Algorithm(str, Enum):
    DQN = "DQN"
    PPO = "PPO"
    SAC = "SAC"
    TD3 = "TD3"


class TrainingStatus(str, Enum):
    TRAINING = "training"
    PAUSED = "paused"
    COMPLETED = "completed"


class EventType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class DeviceKind(str, Enum):
    PUMP = "pump"
    VALVE = "valve"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Network:
    id: int
    name: str
    source_file: str
    description: Optional[str] = None
    node_count: int = 0
    pipe_count: int = 0
    pump_count: int = 0
    status: NetworkStatus = NetworkStatus.INACTIVE
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Pump:
    """A pump; `speed` is its control value (percent of rated speed)."""
    id: int
    network_id: int
    name: str
    external_ref: str                  # hydraulic-engine link id, e.g. "P3"
    status: PumpStatus = PumpStatus.OFF
    speed: float = 0.0
    power: float = 0.0                 # kW, telemetry
    flow: float = 0.0                  # L/s, telemetry
    head: float = 0.0                  # m, telemetry

    kind = DeviceKind.PUMP
    control_field = "speed"

    @property
    def control_value(self) -> float:
        return self.speed

    @property
    def is_stopped(self) -> bool:
        return self.status == PumpStatus.OFF


@dataclass(frozen=True)
class Valve:
    """A valve; `position` is its control value (percent open)."""
    id: int
    network_id: int
    name: str
    external_ref: str                  # hydraulic-engine link id, e.g. "V2"
    status: ValveStatus = ValveStatus.OPEN
    position: float = 100.0
    setting: float = 0.0               # telemetry

    kind = DeviceKind.VALVE
    control_field = "position"

    @property
    def control_value(self) -> float:
        return self.position

    @property
    def is_stopped(self) -> bool:
        return self.status == ValveStatus.CLOSED


Device = Union[Pump, Valve]


@dataclass(frozen=True)
class Checkpoint:
    """Opaque policy blob plus the progress it was taken at."""
    data: bytes
    episode: int
    reward: float
    saved_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TrainingState:
    id: int
    network_id: int
    algorithm: Algorithm = Algorithm.DQN
    status: TrainingStatus = TrainingStatus.PAUSED
    current_episode: int = 0
    total_episodes: int = 3000
    current_reward: float = 0.0
    best_reward: float = 0.0
    learning_rate: float = 0.001
    exploration: float = 0.1
    checkpoint: Optional[Checkpoint] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def progress(self) -> float:
        if self.total_episodes <= 0:
            return 0.0
        return self.current_episode / self.total_episodes * 100.0


@dataclass(frozen=True)
class MetricsSample:
    id: int
    network_id: int
    average_pressure: float
    flow_rate: float
    power_consumption: float
    water_quality: float
    energy_efficiency: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MetricsReading:
    """Engine output before the Repository assigns it an id."""
    average_pressure: float
    flow_rate: float
    power_consumption: float
    water_quality: float
    energy_efficiency: float

    def is_valid(self) -> bool:
        return all(
            v >= 0.0 for v in (
                self.average_pressure, self.flow_rate, self.power_consumption,
                self.water_quality, self.energy_efficiency,
            )
        )


@dataclass(frozen=True)
class Event:
    id: int
    network_id: int
    type: EventType
    title: str
    description: Optional[str] = None
    acknowledged: bool = False
    timestamp: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Partial updates: one optional-field struct per entity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PumpUpdate:
    status: Optional[PumpStatus] = None
    speed: Optional[float] = None
    name: Optional[str] = None

    kind = DeviceKind.PUMP

    @property
    def control_value(self) -> Optional[float]:
        return self.speed


@dataclass(frozen=True)
class ValveUpdate:
    status: Optional[ValveStatus] = None
    position: Optional[float] = None
    name: Optional[str] = None

    kind = DeviceKind.VALVE

    @property
    def control_value(self) -> Optional[float]:
        return self.position


DeviceUpdate = Union[PumpUpdate, ValveUpdate]


@dataclass(frozen=True)
class NetworkUpdate:
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[NetworkStatus] = None


@dataclass(frozen=True)
class TrainingUpdate:
    status: Optional[TrainingStatus] = None
    current_episode: Optional[int] = None
    current_reward: Optional[float] = None
    best_reward: Optional[float] = None
    exploration: Optional[float] = None
    learning_rate: Optional[float] = None
    checkpoint: Optional[Checkpoint] = None


def update_fields(update) -> dict:
    """Return only the fields the caller actually supplied."""
    return {f.name: getattr(update, f.name) for f in fields(update)
            if getattr(update, f.name) is not None}
