"""
hydraulics.py — Hydraulic engine collaborator
==============================================
`HydraulicEngine` is the contract the coordinator consumes: push one
device setting, or run a full simulation from the complete device state.

`SimulatedHydraulicEngine` is the stand-in used by the running service.
It models a loaded network as a NetworkX graph:

    reservoir "R" ──pump links──▶ junction mesh (node_count nodes, pipe_count pipes)

and derives metrics from device state with the pump affinity laws:
    flow ∝ speed,  head ∝ speed²,  shaft power ∝ speed³
Head loss grows with the mean hop distance from the reservoir and with the
square of the delivered flow fraction.  It is a coarse model, not a solver.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import networkx as nx
import numpy as np

from .entities import Device, DeviceKind, MetricsReading, Network
from .errors import EngineError

logger = logging.getLogger(__name__)

RESERVOIR = "R"
GRAVITY = 9.81


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class HydraulicEngine(ABC):
    """Opaque hydraulic solver.  Every call may be slow and may raise EngineError."""

    @abstractmethod
    async def load_network(self, network: Network, devices: Sequence[Device]) -> None:
        ...

    @abstractmethod
    async def apply_device_setting(self, external_ref: str, value: float) -> None:
        ...

    @abstractmethod
    async def run_full_simulation(
        self, network: Network, devices: Sequence[Device],
    ) -> MetricsReading:
        ...


# ---------------------------------------------------------------------------
# Simulated implementation
# ---------------------------------------------------------------------------

@dataclass
class HydraulicConfig:
    """Per-pump ratings and model knobs."""
    rated_flow: float = 90.0        # L/s at 100 % speed
    rated_head: float = 60.0        # m at 100 % speed
    rated_power: float = 70.0       # kW shaft power at 100 % speed
    pipe_loss: float = 2.5          # m of head lost per hop at full flow
    quality_decay: float = 0.8      # quality points lost per hop of water age
    extra_edge_prob: float = 0.3    # chance of each candidate loop pipe
    noise: float = 0.01             # relative Gaussian noise on each metric
    latency: float = 0.0            # seconds per call
    seed: Optional[int] = None


class SimulatedHydraulicEngine(HydraulicEngine):

    def __init__(self, config: Optional[HydraulicConfig] = None):
        self.config = config or HydraulicConfig()
        self._rng = random.Random(self.config.seed)
        self._np_rng = np.random.default_rng(self.config.seed)
        self._graphs: dict[int, nx.Graph] = {}
        self._settings: dict[str, float] = {}
        self._owners: dict[str, int] = {}   # external_ref -> network id

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def _build_graph(self, network: Network, devices: Sequence[Device]) -> nx.Graph:
        """
        Spanning backbone over the junctions first (guarantees every node is
        reachable from the reservoir), then random loop pipes until the
        network's pipe count is reached.
        """
        graph = nx.Graph()
        n = max(1, network.node_count)
        junctions = [f"J{i}" for i in range(n)]
        graph.add_node(RESERVOIR)
        graph.add_nodes_from(junctions)

        order = junctions[:]
        self._rng.shuffle(order)
        for a, b in zip(order, order[1:]):
            graph.add_edge(a, b, kind="pipe")

        target_pipes = max(network.pipe_count, n - 1)
        candidates = [
            (junctions[i], junctions[j])
            for i in range(n) for j in range(i + 1, n)
            if not graph.has_edge(junctions[i], junctions[j])
        ]
        self._rng.shuffle(candidates)
        for a, b in candidates:
            if graph.number_of_edges() >= target_pipes:
                break
            if self._rng.random() < self.config.extra_edge_prob:
                graph.add_edge(a, b, kind="pipe")

        pumps = [d for d in devices if d.kind == DeviceKind.PUMP]
        for idx, pump in enumerate(pumps):
            graph.add_edge(RESERVOIR, junctions[idx % n], kind="pump", ref=pump.external_ref)
        if not pumps:
            graph.add_edge(RESERVOIR, junctions[0], kind="pipe")

        pipes = [(a, b) for a, b, d in graph.edges(data=True) if d["kind"] == "pipe"]
        valves = [d for d in devices if d.kind == DeviceKind.VALVE]
        for (a, b), valve in zip(pipes, valves):
            graph[a][b]["ref"] = valve.external_ref

        return graph

    async def load_network(self, network: Network, devices: Sequence[Device]) -> None:
        await self._delay()
        # refs are unique per engine
        for device in devices:
            owner = self._owners.get(device.external_ref, network.id)
            if owner != network.id:
                raise EngineError(
                    f"Link {device.external_ref!r} already belongs to network {owner}"
                )
        self._graphs[network.id] = self._build_graph(network, devices)
        for device in devices:
            self._owners[device.external_ref] = network.id
            self._settings[device.external_ref] = device.control_value
        logger.info(
            "Hydraulic model loaded for network %d: %d junctions, %d links",
            network.id,
            self._graphs[network.id].number_of_nodes() - 1,
            self._graphs[network.id].number_of_edges(),
        )

    def is_loaded(self, network_id: int) -> bool:
        return network_id in self._graphs

    # ------------------------------------------------------------------
    # Device settings
    # ------------------------------------------------------------------

    async def apply_device_setting(self, external_ref: str, value: float) -> None:
        await self._delay()
        if external_ref not in self._settings:
            raise EngineError(f"Unknown link {external_ref!r}; load the network first")
        if not 0.0 <= value <= 100.0:
            raise EngineError(f"Setting {value} for {external_ref!r} is outside 0–100")
        self._settings[external_ref] = value
        logger.debug("Engine setting %s → %.1f", external_ref, value)

    def setting(self, external_ref: str) -> Optional[float]:
        return self._settings.get(external_ref)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    async def run_full_simulation(
        self, network: Network, devices: Sequence[Device],
    ) -> MetricsReading:
        await self._delay()
        graph = self._graphs.get(network.id)
        if graph is None:
            raise EngineError(f"Network {network.id} is not loaded")

        cfg = self.config
        pumps = [d for d in devices if d.kind == DeviceKind.PUMP]
        valves = [d for d in devices if d.kind == DeviceKind.VALVE]

        speeds = np.array(
            [0.0 if p.is_stopped else p.speed / 100.0 for p in pumps], dtype=float
        )
        openings = np.array(
            [0.0 if v.is_stopped else v.position / 100.0 for v in valves], dtype=float
        )
        valve_factor = float(openings.mean()) if openings.size else 1.0

        capacity = cfg.rated_flow * max(len(pumps), 1)
        flow = float(np.sum(cfg.rated_flow * speeds)) * valve_factor
        flow_fraction = flow / capacity

        # Parallel pumps: discharge head is the flow-weighted mean head
        if speeds.sum() > 0:
            pump_head = float(np.sum(cfg.rated_head * speeds ** 3) / speeds.sum())
        else:
            pump_head = 0.0

        hops = nx.single_source_shortest_path_length(graph, RESERVOIR)
        junction_hops = [h for node, h in hops.items() if node != RESERVOIR]
        mean_hops = float(np.mean(junction_hops)) if junction_hops else 0.0

        head_loss = cfg.pipe_loss * mean_hops * flow_fraction ** 2
        pressure = max(0.0, pump_head - head_loss)

        power = float(np.sum(cfg.rated_power * speeds ** 3))
        useful_power = GRAVITY * (flow / 1000.0) * pressure   # kW
        efficiency = float(np.clip(useful_power / power * 100.0, 0.0, 100.0)) if power > 0 else 0.0

        age_penalty = cfg.quality_decay * mean_hops / max(flow_fraction, 0.05)
        quality = float(np.clip(100.0 - age_penalty, 0.0, 100.0))

        reading = MetricsReading(
            average_pressure=self._jitter(pressure),
            flow_rate=self._jitter(flow),
            power_consumption=self._jitter(power),
            water_quality=min(100.0, self._jitter(quality)),
            energy_efficiency=min(100.0, self._jitter(efficiency)),
        )
        logger.info(
            "Simulation network %d: pressure=%.1f m, flow=%.1f L/s, power=%.1f kW, eff=%.1f%%",
            network.id, reading.average_pressure, reading.flow_rate,
            reading.power_consumption, reading.energy_efficiency,
        )
        return reading

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _jitter(self, value: float) -> float:
        if self.config.noise <= 0:
            return round(value, 4)
        noisy = value * (1.0 + self._np_rng.normal(0, self.config.noise))
        return round(max(0.0, float(noisy)), 4)

    async def _delay(self) -> None:
        if self.config.latency > 0:
            await asyncio.sleep(self.config.latency)
