"""
training_models.py — Pydantic schemas for DRL model endpoints.
==============================================================
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from hydrocontrol.core.entities import Algorithm, TrainingState, TrainingStatus

from .base_models import CamelModel


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ProvisionRequest(CamelModel):
    """POST /api/networks/{id}/drl-model — create the network's model (paused)."""
    algorithm: Algorithm = Algorithm.DQN
    total_episodes: int = Field(default=3000, description="Episodes before training completes")
    learning_rate: float = Field(default=0.001, description="Optimizer learning rate")
    exploration: float = Field(default=0.1, description="Initial exploration rate")

    model_config = {**CamelModel.model_config, "json_schema_extra": {
        "examples": [{"algorithm": "PPO", "totalEpisodes": 3000, "learningRate": 0.0003}]
    }}


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class CheckpointInfo(CamelModel):
    episode: int
    reward: float
    saved_at: datetime
    size_bytes: int


class TrainingStateResponse(CamelModel):
    id: int
    network_id: int
    algorithm: Algorithm
    status: TrainingStatus
    current_episode: int
    total_episodes: int
    progress: float
    current_reward: float
    best_reward: float
    learning_rate: float
    exploration: float
    checkpoint: Optional[CheckpointInfo] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_state(cls, state: TrainingState) -> "TrainingStateResponse":
        checkpoint = None
        if state.checkpoint is not None:
            checkpoint = CheckpointInfo(
                episode=state.checkpoint.episode,
                reward=state.checkpoint.reward,
                saved_at=state.checkpoint.saved_at,
                size_bytes=len(state.checkpoint.data),
            )
        return cls(
            id=state.id,
            network_id=state.network_id,
            algorithm=state.algorithm,
            status=state.status,
            current_episode=state.current_episode,
            total_episodes=state.total_episodes,
            progress=round(state.progress, 2),
            current_reward=state.current_reward,
            best_reward=state.best_reward,
            learning_rate=state.learning_rate,
            exploration=state.exploration,
            checkpoint=checkpoint,
            created_at=state.created_at,
            updated_at=state.updated_at,
        )
