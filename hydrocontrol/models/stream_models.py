"""
stream_models.py — Snapshot schemas pushed to live subscribers.
===============================================================
Wire format on the WebSocket:
    {"type": "networkStatus",    "data": NetworkStatusSnapshot}
    {"type": "trainingProgress", "data": TrainingProgressSnapshot}
"""

from .base_models import CamelModel


class NetworkStatusSnapshot(CamelModel):
    network_id: int
    status: str
    node_count: int
    pipe_count: int
    pump_count: int
    active_pumps: int
    energy_efficiency: float


class TrainingProgressSnapshot(CamelModel):
    model_id: int
    episode: int
    total_episodes: int
    progress: float
    reward: float
    algorithm: str
    learning_rate: float
    exploration: float
