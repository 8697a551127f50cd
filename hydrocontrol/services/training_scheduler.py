"""
training_scheduler.py — Drives the RL training loop for each network
=====================================================================
State machine per TrainingState:

    (no state) ──provision──▶ paused ──start──▶ training ──pause──▶ paused
                                                   │
                                                   └─ episode == total ─▶ completed

One periodic step task per TrainingState, owned here.  Every write to a
TrainingState (timer-driven `step` or external `start` / `pause` /
`save`) runs under the same per-model lock, so a pause can only land
between ticks and never in the middle of a step's write.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from hydrocontrol.core.entities import (
    Algorithm, Checkpoint, EventType, TrainingState, TrainingStatus, TrainingUpdate,
)
from hydrocontrol.core.errors import (
    AlreadyTraining, IntegrityError, ModelNotFound, NotFound, NotTraining,
    PolicyError, PolicyUnavailable, ValidationFailed,
)
from hydrocontrol.core.policy import PolicyEngine
from hydrocontrol.core.repository import Repository

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    step_interval: float = 5.0          # seconds between training steps
    milestone_interval: int = 100       # episodes between milestone events
    exploration_floor: float = 0.01     # exploration never decays below this

    def __post_init__(self):
        if self.step_interval <= 0:
            raise ValueError("step_interval must be positive")
        if self.milestone_interval < 1:
            raise ValueError("milestone_interval must be at least 1")


class TrainingScheduler:
    """
    Owns TrainingState status transitions and the periodic step tasks.

    Construct one per process and share it with the API layer; call
    `shutdown()` on teardown to cancel every running task.
    """

    def __init__(
        self,
        repository: Repository,
        policy: PolicyEngine,
        config: Optional[SchedulerConfig] = None,
    ):
        self.repo = repository
        self.policy = policy
        self.config = config or SchedulerConfig()
        self._tasks: dict[int, asyncio.Task] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _lock(self, model_id: int) -> asyncio.Lock:
        lock = self._locks.get(model_id)
        if lock is None:
            lock = self._locks[model_id] = asyncio.Lock()
        return lock

    def is_active(self, model_id: int) -> bool:
        """True while a step task is scheduled for this model."""
        task = self._tasks.get(model_id)
        return task is not None and not task.done()

    @property
    def active_models(self) -> list[int]:
        return sorted(m for m in self._tasks if self.is_active(m))

    def _detach_task(self, model_id: int) -> None:
        """Stop the step task; a task cannot cancel itself, it just exits."""
        task = self._tasks.pop(model_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _require_state(self, model_id: int) -> TrainingState:
        state = await self.repo.get_training_state(model_id)
        if state is None:
            raise ModelNotFound(f"DRL model {model_id} not found", entity_id=model_id)
        return state

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def provision(
        self,
        network_id: int,
        algorithm: Algorithm = Algorithm.DQN,
        total_episodes: int = 3000,
        learning_rate: float = 0.001,
        exploration: float = 0.1,
    ) -> TrainingState:
        """Create the network's single TrainingState, paused at episode 0."""
        network = await self.repo.get_network(network_id)
        if network is None:
            raise NotFound(f"Network {network_id} not found", entity_id=network_id)
        if total_episodes < 1:
            raise ValidationFailed("totalEpisodes must be at least 1")
        if learning_rate <= 0:
            raise ValidationFailed("learningRate must be positive")
        if not self.config.exploration_floor <= exploration <= 1.0:
            raise ValidationFailed(
                f"exploration must be within [{self.config.exploration_floor}, 1]"
            )

        try:
            state = await self.repo.create_training_state(
                network_id,
                algorithm=algorithm,
                status=TrainingStatus.PAUSED,
                total_episodes=total_episodes,
                learning_rate=learning_rate,
                exploration=exploration,
            )
        except IntegrityError as exc:
            raise ValidationFailed(str(exc), entity_id=network_id) from exc

        await self.repo.create_event(
            network_id, EventType.INFO, "DRL Model Created",
            f"{algorithm.value} agent provisioned for {total_episodes} episodes",
        )
        logger.info("Provisioned %s model %d for network %d", algorithm.value, state.id, network_id)
        return state

    # ------------------------------------------------------------------
    # External transitions
    # ------------------------------------------------------------------

    async def start(self, model_id: int) -> TrainingState:
        """paused / idle → training; replaces any stray step task."""
        async with self._lock(model_id):
            state = await self._require_state(model_id)
            if state.status == TrainingStatus.TRAINING and self.is_active(model_id):
                raise AlreadyTraining(f"DRL model {model_id} is already training", entity_id=model_id)
            if state.status == TrainingStatus.COMPLETED:
                raise ValidationFailed(
                    f"DRL model {model_id} has completed training", entity_id=model_id
                )

            self._detach_task(model_id)
            state = await self.repo.update_training_state(
                model_id, TrainingUpdate(status=TrainingStatus.TRAINING)
            )
            await self.repo.create_event(
                state.network_id, EventType.INFO, "DRL Training Started",
                f"{state.algorithm.value} agent training initiated",
            )
            self._tasks[model_id] = asyncio.create_task(
                self._run(model_id), name=f"training-{model_id}"
            )

        logger.info("Started training DRL model %d at episode %d", model_id, state.current_episode)
        return state

    async def pause(self, model_id: int) -> TrainingState:
        """training → paused.  Waits for an in-flight step to finish its write."""
        async with self._lock(model_id):
            state = await self._require_state(model_id)
            if state.status != TrainingStatus.TRAINING or not self.is_active(model_id):
                raise NotTraining(f"DRL model {model_id} is not training", entity_id=model_id)

            self._detach_task(model_id)
            state = await self.repo.update_training_state(
                model_id, TrainingUpdate(status=TrainingStatus.PAUSED)
            )
            await self.repo.create_event(
                state.network_id, EventType.WARNING, "DRL Training Paused",
                "Training has been paused by user",
            )

        logger.info("Paused training for DRL model %d at episode %d", model_id, state.current_episode)
        return state

    async def save(self, model_id: int) -> TrainingState:
        """Store a policy checkpoint with the episode / reward it was taken at."""
        async with self._lock(model_id):
            state = await self._require_state(model_id)
            try:
                blob = await self.policy.serialize_checkpoint(state)
            except PolicyError as exc:
                logger.error("Checkpoint for DRL model %d failed: %s", model_id, exc)
                raise PolicyUnavailable(f"Model save failed: {exc}", entity_id=model_id) from exc

            checkpoint = Checkpoint(
                data=blob, episode=state.current_episode, reward=state.current_reward,
            )
            state = await self.repo.update_training_state(
                model_id, TrainingUpdate(checkpoint=checkpoint)
            )
            await self.repo.create_event(
                state.network_id, EventType.SUCCESS, "DRL Model Saved",
                f"Model saved at episode {checkpoint.episode}",
            )

        logger.info("Saved DRL model %d (%d bytes)", model_id, len(blob))
        return state

    # ------------------------------------------------------------------
    # Timer-driven step
    # ------------------------------------------------------------------

    async def _run(self, model_id: int) -> None:
        """Periodic step loop; exits when a step reports training is over."""
        try:
            while True:
                await asyncio.sleep(self.config.step_interval)
                if not await self.step(model_id):
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Training loop for DRL model %d crashed", model_id)
        finally:
            if self._tasks.get(model_id) is asyncio.current_task():
                self._tasks.pop(model_id, None)

    async def step(self, model_id: int) -> bool:
        """
        Advance one episode.  Returns False once the model is no longer
        training (paused, completed, or gone), which ends the step loop.

        A policy failure skips the tick without writing anything.
        """
        async with self._lock(model_id):
            state = await self.repo.get_training_state(model_id)
            if state is None or state.status != TrainingStatus.TRAINING:
                return False
            if state.current_episode >= state.total_episodes:
                await self._complete(state)
                return False

            try:
                result = await self.policy.train_step(state)
            except PolicyError as exc:
                logger.warning("Training step skipped for DRL model %d: %s", model_id, exc)
                return True

            episode = state.current_episode + 1
            reward = result.reward
            best_reward = max(state.best_reward, reward)
            decayed = max(self.config.exploration_floor,
                          state.exploration - max(0.0, result.exploration_delta))
            exploration = min(state.exploration, decayed)

            state = await self.repo.update_training_state(
                model_id,
                TrainingUpdate(
                    current_episode=episode,
                    current_reward=reward,
                    best_reward=best_reward,
                    exploration=exploration,
                ),
            )

            if episode >= state.total_episodes:
                await self._complete(state)
                return False

            if episode % self.config.milestone_interval == 0:
                await self.repo.create_event(
                    state.network_id, EventType.INFO, f"Training Episode {episode} Completed",
                    f"Current reward: {reward:.2f}, Best: {best_reward:.2f}",
                )
            return True

    async def _complete(self, state: TrainingState) -> None:
        # Same stop path as pause, then the terminal status write
        self._detach_task(state.id)
        await self.repo.update_training_state(
            state.id, TrainingUpdate(status=TrainingStatus.COMPLETED)
        )
        await self.repo.create_event(
            state.network_id, EventType.SUCCESS, "DRL Training Completed",
            f"Training completed with final reward: {state.current_reward:.2f}",
        )
        logger.info(
            "DRL model %d completed %d episodes (reward %.2f, best %.2f)",
            state.id, state.current_episode, state.current_reward, state.best_reward,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Training scheduler stopped (%d task(s) cancelled)", len(tasks))
