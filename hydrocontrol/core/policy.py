"""
policy.py — RL policy collaborator
===================================
`PolicyEngine` is the contract the scheduler and coordinator consume:

    propose_actions       current device state → one new control value per device
    train_step            one training episode → (reward, exploration delta)
    serialize_checkpoint  model state → opaque bytes

`SimulatedPolicyEngine` stands in for a real DQN/PPO/SAC/TD3 learner.  The
numbers it produces are placeholders; what callers rely on is the shape
of the results, and that exploration deltas are never negative.
"""

import asyncio
import json
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .entities import CONTROL_MAX, CONTROL_MIN, Device, TrainingState
from .errors import PolicyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceAction:
    """One proposed control change."""
    device_id: int
    new_value: float


@dataclass(frozen=True)
class TrainStepResult:
    reward: float               # reward reached after this episode
    exploration_delta: float    # amount to subtract from exploration (≥ 0)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class PolicyEngine(ABC):
    """Opaque RL model.  Every call may be slow and may raise PolicyError."""

    @abstractmethod
    async def propose_actions(
        self, network_id: int, devices: Sequence[Device],
    ) -> list[DeviceAction]:
        ...

    @abstractmethod
    async def train_step(self, state: TrainingState) -> TrainStepResult:
        ...

    @abstractmethod
    async def serialize_checkpoint(self, state: TrainingState) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Simulated implementation
# ---------------------------------------------------------------------------

@dataclass
class PolicyConfig:
    """All tuneable knobs in one place for easy experimentation."""
    action_span: float = 10.0           # proposed change ∈ ±span/2 percent
    reward_scale: float = 50.0          # per-episode reward swing
    reward_bias: float = 0.4            # >0.5 drifts down, <0.5 drifts up
    exploration_decay: float = 0.9995   # multiplicative decay per episode
    latency: float = 0.0                # seconds per call
    seed: Optional[int] = None


class SimulatedPolicyEngine(PolicyEngine):
    """
    Perturbation policy with a drifting reward signal.

    Only running devices (pumps on, valves not closed) receive actions:
    the policy adjusts set-points, it never starts or stops equipment.
    """

    def __init__(self, config: Optional[PolicyConfig] = None):
        self.config = config or PolicyConfig()
        self._rng = random.Random(self.config.seed)
        self._np_rng = np.random.default_rng(self.config.seed)
        logger.info(
            "Policy engine initialised | span=%.1f  decay=%.4f",
            self.config.action_span, self.config.exploration_decay,
        )

    async def propose_actions(
        self, network_id: int, devices: Sequence[Device],
    ) -> list[DeviceAction]:
        await self._delay()
        running = [d for d in devices if not d.is_stopped]
        if not running:
            return []
        deltas = self._np_rng.uniform(-0.5, 0.5, size=len(running)) * self.config.action_span
        actions = [
            DeviceAction(
                device_id=d.id,
                new_value=round(float(np.clip(d.control_value + delta, CONTROL_MIN, CONTROL_MAX)), 2),
            )
            for d, delta in zip(running, deltas)
        ]
        logger.debug("Proposed %d actions for network %d", len(actions), network_id)
        return actions

    async def train_step(self, state: TrainingState) -> TrainStepResult:
        await self._delay()
        reward = state.current_reward + (self._rng.random() - self.config.reward_bias) * self.config.reward_scale
        delta = state.exploration * (1.0 - self.config.exploration_decay)
        return TrainStepResult(reward=round(reward, 4), exploration_delta=max(0.0, delta))

    async def serialize_checkpoint(self, state: TrainingState) -> bytes:
        await self._delay()
        payload = {
            "algorithm": state.algorithm.value,
            "episode": state.current_episode,
            "reward": state.current_reward,
            "bestReward": state.best_reward,
            "learningRate": state.learning_rate,
            "exploration": state.exploration,
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    async def _delay(self) -> None:
        if self.config.latency > 0:
            await asyncio.sleep(self.config.latency)


def decode_checkpoint(data: bytes) -> dict:
    """Read back a blob written by SimulatedPolicyEngine.serialize_checkpoint."""
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PolicyError(f"Unreadable checkpoint: {exc}") from exc
