"""
status_broadcaster.py — Periodic snapshot push to live subscribers
==================================================================
Every subscriber gets two independent loops:

    network status     every `status_interval`   seconds
    training progress  every `progress_interval` seconds

Each loop publishes once on subscribe, then on the fixed grid
t0 + k·interval.  A consumer slower than the interval loses the ticks it
missed; they are never replayed in a burst.  Each snapshot is built from
a single Repository read pass.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from hydrocontrol.core.entities import DeviceKind, PumpStatus
from hydrocontrol.core.errors import NotFound
from hydrocontrol.core.repository import Repository
from hydrocontrol.models.stream_models import NetworkStatusSnapshot, TrainingProgressSnapshot

logger = logging.getLogger(__name__)

Send = Callable[[dict], Awaitable[None]]

NETWORK_STATUS = "networkStatus"
TRAINING_PROGRESS = "trainingProgress"


@dataclass
class BroadcastConfig:
    status_interval: float = 5.0
    progress_interval: float = 2.0

    def __post_init__(self):
        if self.status_interval <= 0 or self.progress_interval <= 0:
            raise ValueError("broadcast intervals must be positive")


class Subscription:
    """Handle for one subscriber's pair of publish loops."""

    def __init__(self, subscription_id: int, network_id: int,
                 on_close: Callable[["Subscription"], None]):
        self.id = subscription_id
        self.network_id = network_id
        self.tasks: list[asyncio.Task] = []
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """Cancel both loops.  Returns False if already closed."""
        if self._closed:
            return False
        self._closed = True
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current and not task.done():
                task.cancel()
        self._on_close(self)
        logger.info("Subscription %d closed (network %d)", self.id, self.network_id)
        return True

    async def wait_closed(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self.tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class StatusBroadcaster:

    def __init__(self, repository: Repository, config: Optional[BroadcastConfig] = None):
        self.repo = repository
        self.config = config or BroadcastConfig()
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def network_status(self, network_id: int) -> Optional[NetworkStatusSnapshot]:
        view = await self.repo.network_view(network_id)
        if view is None:
            return None
        network = view.network
        active_pumps = sum(
            1 for d in view.devices
            if d.kind == DeviceKind.PUMP and d.status == PumpStatus.ON
        )
        efficiency = view.latest_metrics.energy_efficiency if view.latest_metrics else 0.0
        return NetworkStatusSnapshot(
            network_id=network.id,
            status=network.status.value,
            node_count=network.node_count,
            pipe_count=network.pipe_count,
            pump_count=network.pump_count,
            active_pumps=active_pumps,
            energy_efficiency=efficiency,
        )

    async def training_progress(self, network_id: int) -> Optional[TrainingProgressSnapshot]:
        state = await self.repo.get_training_state_by_network(network_id)
        if state is None:
            return None
        return TrainingProgressSnapshot(
            model_id=state.id,
            episode=state.current_episode,
            total_episodes=state.total_episodes,
            progress=state.progress,
            reward=state.current_reward,
            algorithm=state.algorithm.value,
            learning_rate=state.learning_rate,
            exploration=state.exploration,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, network_id: int, send: Send) -> Subscription:
        """Start both publish loops for one subscriber."""
        if await self.repo.get_network(network_id) is None:
            raise NotFound(f"Network {network_id} not found", entity_id=network_id)

        sub = Subscription(next(self._ids), network_id, self._forget)
        self._subscriptions[sub.id] = sub
        sub.tasks = [
            asyncio.create_task(
                self._publish_loop(sub, send, NETWORK_STATUS,
                                   self.config.status_interval, self.network_status),
                name=f"broadcast-{sub.id}-status",
            ),
            asyncio.create_task(
                self._publish_loop(sub, send, TRAINING_PROGRESS,
                                   self.config.progress_interval, self.training_progress),
                name=f"broadcast-{sub.id}-progress",
            ),
        ]
        logger.info("Subscription %d opened for network %d", sub.id, network_id)
        return sub

    def _forget(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)

    async def _publish_loop(
        self,
        sub: Subscription,
        send: Send,
        message_type: str,
        interval: float,
        build: Callable[[int], Awaitable[Optional[object]]],
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        tick = 0
        try:
            while True:
                snapshot = await build(sub.network_id)
                if snapshot is not None:
                    try:
                        await send({
                            "type": message_type,
                            "data": snapshot.model_dump(by_alias=True, mode="json"),
                        })
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        logger.info("Subscription %d send failed: %s", sub.id, exc)
                        sub.close()
                        return

                tick += 1
                due = started + tick * interval
                now = loop.time()
                if now > due:
                    missed = int((now - due) // interval) + 1
                    tick += missed
                    due = started + tick * interval
                    logger.warning(
                        "Subscription %d dropped %d %s tick(s)", sub.id, missed, message_type,
                    )
                await asyncio.sleep(due - now)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Subscription %d %s loop crashed", sub.id, message_type)
            sub.close()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close_all(self) -> None:
        subs = list(self._subscriptions.values())
        for sub in subs:
            sub.close()
        for sub in subs:
            await sub.wait_closed()
        logger.info("Status broadcaster stopped (%d subscription(s) closed)", len(subs))
