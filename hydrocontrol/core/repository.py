"""
repository.py — In-memory store for every domain record
========================================================
The Repository is the only owner of entity storage.  It holds no business
rules: it assigns ids, enforces referential / uniqueness invariants and
serialises read-modify-write per entity id.

Conventions:
- Lookups of an unknown id return None; callers decide how to react.
- Partial updates replace only the fields present on the update struct.
- Ids come from one counter shared by every entity type.
- All methods are coroutines so the store can be swapped for an async
  backend; none of them awaits anything except a per-id lock, so each
  call observes and produces a consistent state.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from .entities import (
    Device, DeviceKind, DeviceUpdate, Event, EventType, MetricsReading,
    MetricsSample, Network, NetworkStatus, NetworkUpdate, Pump, PumpStatus,
    TrainingState, TrainingUpdate, Valve, ValveStatus, update_fields, utcnow,
)
from .errors import IntegrityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkView:
    """Everything a status snapshot needs, read in one pass."""
    network: Network
    devices: tuple[Device, ...]
    latest_metrics: Optional[MetricsSample]


class Repository:
    """
    In-memory, asyncio-safe entity store.

    One instance per process (or per test); pass it explicitly to the
    services that need it.
    """

    def __init__(self, first_id: int = 1):
        self._next_id = first_id
        self._networks: dict[int, Network] = {}
        self._devices: dict[int, Device] = {}
        self._training: dict[int, TrainingState] = {}
        self._metrics: dict[int, list[MetricsSample]] = {}
        self._events: dict[int, Event] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Id allocation & locking
    # ------------------------------------------------------------------

    def _allocate_id(self) -> int:
        entity_id = self._next_id
        self._next_id += 1
        return entity_id

    def reserve_ids(self, floor: int) -> None:
        """Move the id counter past bootstrap data."""
        self._next_id = max(self._next_id, floor)

    @property
    def next_id(self) -> int:
        return self._next_id

    def _lock(self, entity_id: int) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks[entity_id] = asyncio.Lock()
        return lock

    def _require_network(self, network_id: int) -> None:
        if network_id not in self._networks:
            raise IntegrityError(f"Network {network_id} does not exist")

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    async def get_network(self, network_id: int) -> Optional[Network]:
        return self._networks.get(network_id)

    async def list_networks(self) -> list[Network]:
        return sorted(self._networks.values(), key=lambda n: n.id)

    async def create_network(
        self,
        name: str,
        source_file: str,
        description: Optional[str] = None,
        node_count: int = 0,
        pipe_count: int = 0,
        pump_count: int = 0,
        status: NetworkStatus = NetworkStatus.INACTIVE,
    ) -> Network:
        network = Network(
            id=self._allocate_id(),
            name=name,
            source_file=source_file,
            description=description,
            node_count=node_count,
            pipe_count=pipe_count,
            pump_count=pump_count,
            status=status,
        )
        self._networks[network.id] = network
        return network

    async def update_network(self, network_id: int, update: NetworkUpdate) -> Optional[Network]:
        async with self._lock(network_id):
            network = self._networks.get(network_id)
            if network is None:
                return None
            network = replace(network, **update_fields(update))
            self._networks[network_id] = network
            return network

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def get_device(self, device_id: int) -> Optional[Device]:
        return self._devices.get(device_id)

    async def list_devices(
        self, network_id: int, kind: Optional[DeviceKind] = None,
    ) -> list[Device]:
        return self._devices_of(network_id, kind)

    def _devices_of(self, network_id: int, kind: Optional[DeviceKind] = None) -> list[Device]:
        return [
            d for d in sorted(self._devices.values(), key=lambda d: d.id)
            if d.network_id == network_id and (kind is None or d.kind == kind)
        ]

    async def create_pump(
        self,
        network_id: int,
        name: str,
        external_ref: str,
        status: PumpStatus = PumpStatus.OFF,
        speed: float = 0.0,
        power: float = 0.0,
        flow: float = 0.0,
        head: float = 0.0,
    ) -> Pump:
        self._require_network(network_id)
        self._require_unique_ref(network_id, external_ref)
        pump = Pump(
            id=self._allocate_id(), network_id=network_id, name=name,
            external_ref=external_ref, status=status, speed=speed,
            power=power, flow=flow, head=head,
        )
        self._devices[pump.id] = pump
        return pump

    async def create_valve(
        self,
        network_id: int,
        name: str,
        external_ref: str,
        status: ValveStatus = ValveStatus.OPEN,
        position: float = 100.0,
        setting: float = 0.0,
    ) -> Valve:
        self._require_network(network_id)
        self._require_unique_ref(network_id, external_ref)
        valve = Valve(
            id=self._allocate_id(), network_id=network_id, name=name,
            external_ref=external_ref, status=status, position=position,
            setting=setting,
        )
        self._devices[valve.id] = valve
        return valve

    def _require_unique_ref(self, network_id: int, external_ref: str) -> None:
        if any(d.external_ref == external_ref for d in self._devices_of(network_id)):
            raise IntegrityError(
                f"Device reference {external_ref!r} already used in network {network_id}"
            )

    def _apply_device_update(self, device: Device, update: DeviceUpdate) -> Device:
        if device.kind != update.kind:
            raise IntegrityError(
                f"Device {device.id} is a {device.kind.value}, not a {update.kind.value}"
            )
        return replace(device, **update_fields(update))

    async def update_device(self, device_id: int, update: DeviceUpdate) -> Optional[Device]:
        result = await self.modify_device(device_id, lambda _current: update)
        return result[1] if result else None

    async def modify_device(
        self, device_id: int, prepare: Callable[[Device], DeviceUpdate],
    ) -> Optional[tuple[Device, Device]]:
        """
        Atomic read-modify-write: `prepare` sees the current device under
        the id lock and returns the update to apply (or raises to abort).
        Returns (before, after), or None for an unknown id.
        """
        async with self._lock(device_id):
            before = self._devices.get(device_id)
            if before is None:
                return None
            after = self._apply_device_update(before, prepare(before))
            self._devices[device_id] = after
            return before, after

    async def bulk_update_devices(self, updates: dict[int, DeviceUpdate]) -> list[Device]:
        """
        Apply several device updates as one atomic write.

        Locks are taken in id order so concurrent bulk writers cannot
        deadlock; either every update lands or (on a kind mismatch) none.
        Unknown ids are skipped.
        """
        ids = sorted(i for i in updates if i in self._devices)
        locks = [self._lock(i) for i in ids]
        for lock in locks:
            await lock.acquire()
        try:
            staged = {i: self._apply_device_update(self._devices[i], updates[i]) for i in ids}
            self._devices.update(staged)
            return [staged[i] for i in ids]
        finally:
            for lock in reversed(locks):
                lock.release()

    # ------------------------------------------------------------------
    # Training state (1:1 with Network)
    # ------------------------------------------------------------------

    async def get_training_state(self, model_id: int) -> Optional[TrainingState]:
        return self._training.get(model_id)

    async def get_training_state_by_network(self, network_id: int) -> Optional[TrainingState]:
        return next(
            (t for t in self._training.values() if t.network_id == network_id), None
        )

    async def create_training_state(self, network_id: int, **values) -> TrainingState:
        self._require_network(network_id)
        if await self.get_training_state_by_network(network_id) is not None:
            raise IntegrityError(f"Network {network_id} already has a training state")
        state = TrainingState(id=self._allocate_id(), network_id=network_id, **values)
        self._training[state.id] = state
        return state

    async def update_training_state(
        self, model_id: int, update: TrainingUpdate,
    ) -> Optional[TrainingState]:
        async with self._lock(model_id):
            state = self._training.get(model_id)
            if state is None:
                return None
            state = replace(state, **update_fields(update), updated_at=utcnow())
            self._training[model_id] = state
            return state

    # ------------------------------------------------------------------
    # Metrics (append-only per network)
    # ------------------------------------------------------------------

    async def create_metrics(
        self, network_id: int, reading: MetricsReading,
        timestamp: Optional[datetime] = None,
    ) -> MetricsSample:
        self._require_network(network_id)
        sample = MetricsSample(
            id=self._allocate_id(),
            network_id=network_id,
            average_pressure=reading.average_pressure,
            flow_rate=reading.flow_rate,
            power_consumption=reading.power_consumption,
            water_quality=reading.water_quality,
            energy_efficiency=reading.energy_efficiency,
            timestamp=timestamp or utcnow(),
        )
        history = self._metrics.setdefault(network_id, [])
        history.append(sample)
        history.sort(key=lambda m: m.timestamp)
        return sample

    async def latest_metrics(self, network_id: int) -> Optional[MetricsSample]:
        history = self._metrics.get(network_id)
        return history[-1] if history else None

    async def metrics_history(
        self, network_id: int, hours: float = 24, now: Optional[datetime] = None,
    ) -> list[MetricsSample]:
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        return [m for m in self._metrics.get(network_id, []) if m.timestamp > cutoff]

    # ------------------------------------------------------------------
    # Events (append-only, acknowledge flips once)
    # ------------------------------------------------------------------

    async def create_event(
        self,
        network_id: int,
        type: EventType,
        title: str,
        description: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Event:
        self._require_network(network_id)
        event = Event(
            id=self._allocate_id(),
            network_id=network_id,
            type=type,
            title=title,
            description=description,
            timestamp=timestamp or utcnow(),
        )
        self._events[event.id] = event
        logger.debug("Event %d [%s] %s", event.id, type.value, title)
        return event

    async def recent_events(self, network_id: int, limit: int = 10) -> list[Event]:
        events = [e for e in self._events.values() if e.network_id == network_id]
        events.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return events[:max(0, limit)]

    async def acknowledge_event(self, event_id: int) -> Optional[Event]:
        async with self._lock(event_id):
            event = self._events.get(event_id)
            if event is None:
                return None
            if not event.acknowledged:
                event = replace(event, acknowledged=True)
                self._events[event_id] = event
            return event

    # ------------------------------------------------------------------
    # Snapshot reads
    # ------------------------------------------------------------------

    async def network_view(self, network_id: int) -> Optional[NetworkView]:
        """Network, its devices and latest sample, all from one read pass."""
        network = self._networks.get(network_id)
        if network is None:
            return None
        history = self._metrics.get(network_id)
        return NetworkView(
            network=network,
            devices=tuple(self._devices_of(network_id)),
            latest_metrics=history[-1] if history else None,
        )

