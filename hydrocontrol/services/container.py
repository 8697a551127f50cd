"""
container.py — Explicit wiring of the service graph
====================================================
One `Services` instance per process (or per test) holds the Repository
and everything built on it.  Nothing here is a module-level singleton:
the FastAPI app keeps its container on `app.state`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from hydrocontrol.config import Settings
from hydrocontrol.core.hydraulics import HydraulicConfig, HydraulicEngine, SimulatedHydraulicEngine
from hydrocontrol.core.policy import PolicyConfig, PolicyEngine, SimulatedPolicyEngine
from hydrocontrol.core.repository import Repository
from hydrocontrol.core.seed import seed_sample_data
from hydrocontrol.services.control_coordinator import ControlCoordinator
from hydrocontrol.services.status_broadcaster import BroadcastConfig, StatusBroadcaster
from hydrocontrol.services.training_scheduler import SchedulerConfig, TrainingScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: Repository
    hydraulics: HydraulicEngine
    policy: PolicyEngine
    scheduler: TrainingScheduler
    coordinator: ControlCoordinator
    broadcaster: StatusBroadcaster

    async def start(self) -> None:
        """Seed sample data (if enabled) and load every network into the engine."""
        if self.settings.seed_sample_data and not await self.repository.list_networks():
            await seed_sample_data(self.repository, seed=self.settings.random_seed)
        for network in await self.repository.list_networks():
            await self.coordinator.load_network(network.id)

    async def stop(self) -> None:
        await self.broadcaster.close_all()
        await self.scheduler.shutdown()


def build_services(
    settings: Optional[Settings] = None,
    hydraulics: Optional[HydraulicEngine] = None,
    policy: Optional[PolicyEngine] = None,
    repository: Optional[Repository] = None,
) -> Services:
    """Construct the full service graph; collaborators may be injected."""
    settings = settings or Settings()
    repository = repository or Repository()
    hydraulics = hydraulics or SimulatedHydraulicEngine(
        HydraulicConfig(latency=settings.engine_latency, seed=settings.random_seed)
    )
    policy = policy or SimulatedPolicyEngine(
        PolicyConfig(latency=settings.engine_latency, seed=settings.random_seed)
    )
    scheduler = TrainingScheduler(
        repository, policy,
        SchedulerConfig(
            step_interval=settings.training_step_interval,
            milestone_interval=settings.milestone_interval,
            exploration_floor=settings.exploration_floor,
        ),
    )
    coordinator = ControlCoordinator(repository, hydraulics, policy)
    broadcaster = StatusBroadcaster(
        repository,
        BroadcastConfig(
            status_interval=settings.status_interval,
            progress_interval=settings.progress_interval,
        ),
    )
    logger.info("Services built for %s", settings.app_name)
    return Services(
        settings=settings,
        repository=repository,
        hydraulics=hydraulics,
        policy=policy,
        scheduler=scheduler,
        coordinator=coordinator,
        broadcaster=broadcaster,
    )
