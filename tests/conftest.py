import asyncio
from typing import Callable, Optional, Sequence

import pytest
import pytest_asyncio

from hydrocontrol.core.entities import (
    Device, MetricsReading, Network, NetworkStatus, PumpStatus, TrainingState, ValveStatus,
)
from hydrocontrol.core.errors import EngineError, PolicyError
from hydrocontrol.core.hydraulics import HydraulicEngine
from hydrocontrol.core.policy import DeviceAction, PolicyEngine, TrainStepResult
from hydrocontrol.core.repository import Repository


class FakeHydraulicEngine(HydraulicEngine):
    """In-memory engine used for testing the coordinator.

    - Records every pushed setting in `settings` and `calls`
    - `fail_refs` / `fail_simulation` / `fail_load` make calls raise EngineError
    - When `gate` is set, apply_device_setting signals `entered` then waits on it
    """

    def __init__(self) -> None:
        self.settings: dict[str, float] = {}
        self.calls: list[tuple[str, float]] = []
        self.loaded: list[int] = []
        self.fail_refs: set[str] = set()
        self.fail_simulation = False
        self.fail_load = False
        self.reading = MetricsReading(
            average_pressure=52.0, flow_rate=120.0, power_consumption=80.0,
            water_quality=97.5, energy_efficiency=81.0,
        )
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    async def load_network(self, network: Network, devices: Sequence[Device]) -> None:
        if self.fail_load:
            raise EngineError("solver unavailable")
        self.loaded.append(network.id)
        for device in devices:
            self.settings[device.external_ref] = device.control_value

    async def apply_device_setting(self, external_ref: str, value: float) -> None:
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()
        if external_ref in self.fail_refs:
            raise EngineError(f"link {external_ref} unreachable")
        self.calls.append((external_ref, value))
        self.settings[external_ref] = value

    async def run_full_simulation(self, network: Network, devices: Sequence[Device]) -> MetricsReading:
        await asyncio.sleep(0)
        if self.fail_simulation:
            raise EngineError("solver diverged")
        return self.reading


class FakePolicyEngine(PolicyEngine):
    """Scriptable policy.

    - `propose` builds the action list (default: every device to `target`)
    - `rewards` feeds train_step in order; `exploration_delta` is returned as-is
    - When `gate` is set, propose_actions / train_step signal `entered` then wait
    """

    def __init__(self) -> None:
        self.target = 90.0
        self.propose: Optional[Callable[[Sequence[Device]], list[DeviceAction]]] = None
        self.rewards: list[float] = []
        self.exploration_delta = 0.01
        self.fail_propose = False
        self.fail_train = False
        self.fail_checkpoint = False
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()
        self.train_calls = 0

    async def _wait_gate(self) -> None:
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()

    async def propose_actions(self, network_id: int, devices: Sequence[Device]) -> list[DeviceAction]:
        await self._wait_gate()
        if self.fail_propose:
            raise PolicyError("model not loaded")
        if self.propose is not None:
            return self.propose(devices)
        return [DeviceAction(d.id, self.target) for d in devices]

    async def train_step(self, state: TrainingState) -> TrainStepResult:
        await self._wait_gate()
        self.train_calls += 1
        if self.fail_train:
            raise PolicyError("optimizer step failed")
        reward = self.rewards.pop(0) if self.rewards else state.current_reward + 1.0
        return TrainStepResult(reward=reward, exploration_delta=self.exploration_delta)

    async def serialize_checkpoint(self, state: TrainingState) -> bytes:
        if self.fail_checkpoint:
            raise PolicyError("disk full")
        return f"{state.current_episode}:{state.current_reward}".encode()


async def make_network(
    repo: Repository,
    speeds: Sequence[float] = (80.0, 0.0, 65.0),
    statuses: Sequence[PumpStatus] = (PumpStatus.ON, PumpStatus.OFF, PumpStatus.ON),
    valve_positions: Sequence[float] = (),
) -> Network:
    network = await repo.create_network(
        name="Test Network", source_file="test.inp",
        node_count=6, pipe_count=8, pump_count=len(speeds),
        status=NetworkStatus.ACTIVE,
    )
    for i, (speed, status) in enumerate(zip(speeds, statuses), start=1):
        await repo.create_pump(network.id, f"Pump {i}", f"P{i}", status=status, speed=speed)
    for i, position in enumerate(valve_positions, start=1):
        await repo.create_valve(network.id, f"Valve {i}", f"V{i}", status=ValveStatus.OPEN, position=position)
    return network


@pytest.fixture
def repo():
    return Repository()


@pytest.fixture
def engine():
    return FakeHydraulicEngine()


@pytest.fixture
def policy():
    return FakePolicyEngine()


@pytest_asyncio.fixture
async def network(repo):
    return await make_network(repo)
