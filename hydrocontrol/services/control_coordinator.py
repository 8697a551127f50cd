"""
control_coordinator.py — Request-facing core for device control
================================================================
Validates and applies device updates, runs simulations, applies the
policy's optimal controls and performs emergency shutdowns.

Concurrency rules:
- A single device's read-validate-write happens inside the Repository's
  per-id atomic section, so updates to one device are linearised.
- `apply_optimal_controls` and `emergency_shutdown` hold a per-network
  lock for their whole run; whichever gets it first finishes before the
  other starts.
- Engine sync is advisory: the stored value is authoritative and a failed
  sync never rolls it back.  Syncs for one device are serialised and
  always push the latest stored value.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from hydrocontrol.core.entities import (
    CONTROL_MAX, CONTROL_MIN, Device, DeviceKind, DeviceUpdate, Event, EventType,
    MetricsSample, Network, NetworkStatus, NetworkUpdate, Pump, PumpStatus, PumpUpdate,
    ValveStatus, ValveUpdate,
)
from hydrocontrol.core.errors import (
    CoordinatorError, EngineError, EngineSyncFailed, IntegrityError, NotFound, PolicyError,
    PolicyUnavailable, SimulationFailed, ValidationFailed,
)
from hydrocontrol.core.hydraulics import HydraulicEngine
from hydrocontrol.core.policy import PolicyEngine
from hydrocontrol.core.repository import Repository

logger = logging.getLogger(__name__)

MAX_HISTORY_HOURS = 24 * 365


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceUpdateResult:
    """A stored device update plus the outcome of the advisory engine sync."""
    device: Device
    engine_synced: bool = True
    sync_error: Optional[EngineSyncFailed] = None


@dataclass(frozen=True)
class ActionFailure:
    device_id: int
    error: str          # taxonomy name, e.g. "ValidationFailed"
    detail: str


@dataclass(frozen=True)
class OptimalControlsResult:
    network_id: int
    applied: list[DeviceUpdateResult] = field(default_factory=list)
    failed: list[ActionFailure] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.applied) and bool(self.failed)


@dataclass(frozen=True)
class ShutdownResult:
    network_id: int
    stopped: list[Pump]
    sync_failures: list[str]
    event: Event


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def resolve_update(device: Device, update: DeviceUpdate) -> DeviceUpdate:
    """
    Check an update against the device it targets and return the update
    to store.  Enforces:
        - the update kind matches the device kind
        - control value ∈ [0, 100]
        - a stopped device (off / closed) has control value 0
    """
    if device.kind != update.kind:
        raise ValidationFailed(
            f"Device {device.id} is a {device.kind.value}, not a {update.kind.value}",
            entity_id=device.id,
        )

    value = update.control_value
    if value is not None and not CONTROL_MIN <= value <= CONTROL_MAX:
        raise ValidationFailed(
            f"{device.control_field} must be between {CONTROL_MIN:g} and {CONTROL_MAX:g}, got {value:g}",
            entity_id=device.id,
        )

    status = update.status or device.status
    stopped = status in (PumpStatus.OFF, ValveStatus.CLOSED)
    if not stopped:
        return update

    if value is not None and value != 0:
        if update.status is not None:
            raise ValidationFailed(
                f"Cannot set {device.control_field} {value:g} while setting status {status.value}",
                entity_id=device.id,
            )
        raise ValidationFailed(
            f"{device.name} is {status.value}; turn it on before changing {device.control_field}",
            entity_id=device.id,
        )

    if isinstance(update, PumpUpdate):
        return PumpUpdate(status=update.status, speed=0.0, name=update.name)
    return ValveUpdate(status=update.status, position=0.0, name=update.name)


def control_update(device: Device, value: float) -> DeviceUpdate:
    if device.kind == DeviceKind.PUMP:
        return PumpUpdate(speed=value)
    return ValveUpdate(position=value)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class ControlCoordinator:

    def __init__(
        self,
        repository: Repository,
        hydraulics: HydraulicEngine,
        policy: PolicyEngine,
    ):
        self.repo = repository
        self.hydraulics = hydraulics
        self.policy = policy
        self._network_locks: dict[int, asyncio.Lock] = {}
        self._sync_locks: dict[int, asyncio.Lock] = {}

    def _network_lock(self, network_id: int) -> asyncio.Lock:
        lock = self._network_locks.get(network_id)
        if lock is None:
            lock = self._network_locks[network_id] = asyncio.Lock()
        return lock

    def _sync_lock(self, device_id: int) -> asyncio.Lock:
        lock = self._sync_locks.get(device_id)
        if lock is None:
            lock = self._sync_locks[device_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_networks(self) -> list[Network]:
        return await self.repo.list_networks()

    async def get_network(self, network_id: int) -> Network:
        network = await self.repo.get_network(network_id)
        if network is None:
            raise NotFound(f"Network {network_id} not found", entity_id=network_id)
        return network

    async def get_device(self, device_id: int) -> Device:
        device = await self.repo.get_device(device_id)
        if device is None:
            raise NotFound(f"Device {device_id} not found", entity_id=device_id)
        return device

    async def list_devices(self, network_id: int, kind: Optional[DeviceKind] = None) -> list[Device]:
        await self.get_network(network_id)
        return await self.repo.list_devices(network_id, kind)

    async def latest_metrics(self, network_id: int) -> MetricsSample:
        await self.get_network(network_id)
        sample = await self.repo.latest_metrics(network_id)
        if sample is None:
            raise NotFound(f"No metrics found for network {network_id}", entity_id=network_id)
        return sample

    async def metrics_history(self, network_id: int, hours: float = 24) -> list[MetricsSample]:
        await self.get_network(network_id)
        if not 0 < hours <= MAX_HISTORY_HOURS:
            raise ValidationFailed(f"hours must be in (0, {MAX_HISTORY_HOURS}], got {hours:g}")
        return await self.repo.metrics_history(network_id, hours)

    async def recent_events(self, network_id: int, limit: int = 10) -> list[Event]:
        await self.get_network(network_id)
        if limit < 1:
            raise ValidationFailed("limit must be at least 1")
        return await self.repo.recent_events(network_id, limit)

    async def acknowledge_event(self, event_id: int) -> Event:
        event = await self.repo.acknowledge_event(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", entity_id=event_id)
        return event

    # ------------------------------------------------------------------
    # Network load
    # ------------------------------------------------------------------

    async def load_network(self, network_id: int) -> Network:
        """Hand the network to the hydraulic engine and mark it active."""
        view = await self.repo.network_view(network_id)
        if view is None:
            raise NotFound(f"Network {network_id} not found", entity_id=network_id)
        try:
            await self.hydraulics.load_network(view.network, view.devices)
        except EngineError as exc:
            logger.error("Loading network %d failed: %s", network_id, exc)
            raise SimulationFailed(f"Network loading failed: {exc}", entity_id=network_id) from exc

        network = await self.repo.update_network(network_id, NetworkUpdate(status=NetworkStatus.ACTIVE))
        await self.repo.create_event(
            network_id, EventType.INFO, "Network Loaded",
            f"{network.name} loaded from {network.source_file}",
        )
        logger.info("Network %d (%s) loaded", network_id, network.name)
        return network

    # ------------------------------------------------------------------
    # Device updates
    # ------------------------------------------------------------------

    async def update_device(self, device_id: int, update: DeviceUpdate) -> DeviceUpdateResult:
        """
        Validate and store a partial device update, then push a changed
        control value to the hydraulic engine.

        Raises NotFound / ValidationFailed with nothing written.  An engine
        failure after the write is reported on the result, not raised.
        """
        try:
            outcome = await self.repo.modify_device(
                device_id, lambda current: resolve_update(current, update)
            )
        except IntegrityError as exc:
            raise ValidationFailed(str(exc), entity_id=device_id) from exc
        if outcome is None:
            raise NotFound(f"Device {device_id} not found", entity_id=device_id)

        before, after = outcome
        if after.control_value == before.control_value:
            return DeviceUpdateResult(device=after)

        try:
            await self._sync_engine(after)
        except EngineError as exc:
            message = f"{after.name} ({after.external_ref}): {exc}"
            logger.warning("Hydraulic sync failed for device %d: %s", device_id, exc)
            await self.repo.create_event(
                after.network_id, EventType.WARNING, "Hydraulic Sync Failed", message,
            )
            return DeviceUpdateResult(
                device=after, engine_synced=False,
                sync_error=EngineSyncFailed(message, entity_id=device_id),
            )
        return DeviceUpdateResult(device=after)

    async def _sync_engine(self, device: Device) -> None:
        # Push whatever is stored now, so out-of-order syncs converge on the latest write
        async with self._sync_lock(device.id):
            current = await self.repo.get_device(device.id) or device
            await self.hydraulics.apply_device_setting(current.external_ref, current.control_value)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    async def run_simulation(self, network_id: int) -> MetricsSample:
        """Run the engine on the full device state; append one sample or nothing."""
        view = await self.repo.network_view(network_id)
        if view is None:
            raise NotFound(f"Network {network_id} not found", entity_id=network_id)
        try:
            reading = await self.hydraulics.run_full_simulation(view.network, view.devices)
        except EngineError as exc:
            logger.error("Simulation for network %d failed: %s", network_id, exc)
            raise SimulationFailed(f"Simulation execution failed: {exc}", entity_id=network_id) from exc
        if not reading.is_valid():
            raise SimulationFailed(
                f"Simulation for network {network_id} returned negative metrics",
                entity_id=network_id,
            )
        return await self.repo.create_metrics(network_id, reading)

    # ------------------------------------------------------------------
    # Optimal controls & emergency shutdown (mutually exclusive per network)
    # ------------------------------------------------------------------

    async def apply_optimal_controls(self, network_id: int) -> OptimalControlsResult:
        """
        Ask the policy for one action per controllable device and apply each
        through the same path as `update_device`.  Per-device failures are
        collected, not raised; a policy failure aborts with nothing applied.
        """
        await self.get_network(network_id)
        async with self._network_lock(network_id):
            devices = await self.repo.list_devices(network_id)
            try:
                actions = await self.policy.propose_actions(network_id, devices)
            except PolicyError as exc:
                logger.error("Policy failed for network %d: %s", network_id, exc)
                raise PolicyUnavailable(f"Action prediction failed: {exc}", entity_id=network_id) from exc

            by_id = {d.id: d for d in devices}
            applied: list[DeviceUpdateResult] = []
            failed: list[ActionFailure] = []
            for action in actions:
                device = by_id.get(action.device_id)
                if device is None:
                    failed.append(ActionFailure(
                        action.device_id, NotFound.__name__,
                        f"Device {action.device_id} is not part of network {network_id}",
                    ))
                    continue
                try:
                    applied.append(
                        await self.update_device(device.id, control_update(device, action.new_value))
                    )
                except CoordinatorError as exc:
                    failed.append(ActionFailure(action.device_id, exc.name, exc.message))

        logger.info(
            "Optimal controls for network %d: %d applied, %d failed",
            network_id, len(applied), len(failed),
        )
        return OptimalControlsResult(network_id=network_id, applied=applied, failed=failed)

    async def emergency_shutdown(self, network_id: int) -> ShutdownResult:
        """
        Force every pump off at speed 0 in one atomic write, bypassing the
        normal update validation, then sync the engine and record one
        warning event.
        """
        await self.get_network(network_id)
        async with self._network_lock(network_id):
            pumps = await self.repo.list_devices(network_id, DeviceKind.PUMP)
            stopped = await self.repo.bulk_update_devices(
                {p.id: PumpUpdate(status=PumpStatus.OFF, speed=0.0) for p in pumps}
            )

            sync_failures: list[str] = []
            for pump in stopped:
                try:
                    await self._sync_engine(pump)
                except EngineError as exc:
                    sync_failures.append(f"{pump.external_ref}: {exc}")

            description = "All pumps have been stopped for safety"
            if sync_failures:
                description += f" (hydraulic sync failed for {', '.join(sync_failures)})"
            event = await self.repo.create_event(
                network_id, EventType.WARNING, "Emergency Shutdown Activated", description,
            )

        logger.warning(
            "Emergency shutdown on network %d: %d pump(s) stopped, %d sync failure(s)",
            network_id, len(stopped), len(sync_failures),
        )
        return ShutdownResult(
            network_id=network_id, stopped=stopped, sync_failures=sync_failures, event=event,
        )
