"""
seed.py — Sample data for a fresh in-memory Repository
=======================================================
One 45-node city network with 16 pump stations (12 running), 8 valves,
a DQN model part-way through training and a few historical events.
"""

import logging
import random
from datetime import timedelta
from typing import Optional

from .entities import (
    Algorithm, EventType, Network, NetworkStatus, PumpStatus, TrainingStatus,
    ValveStatus, utcnow,
)
from .repository import Repository

logger = logging.getLogger(__name__)

PUMP_COUNT = 16
RUNNING_PUMPS = 12
VALVE_COUNT = 8
ID_FLOOR = 100

SAMPLE_EVENTS = [
    (EventType.SUCCESS, "DRL agent achieved new efficiency record",
     "Power consumption reduced by 8.3% while maintaining optimal pressure levels"),
    (EventType.INFO, "Training episode 2,800 completed",
     "Reward convergence improved, model saved automatically"),
    (EventType.INFO, "Pump Station B speed optimized",
     "DRL agent adjusted pump speed from 92% to 78% for better efficiency"),
]


async def seed_sample_data(repo: Repository, seed: Optional[int] = None) -> Network:
    """Populate `repo` and move its id counter past the sample records."""
    rng = random.Random(seed)

    network = await repo.create_network(
        name="Main Distribution Network",
        source_file="net1.inp",
        description="Primary water distribution network for the city",
        node_count=45,
        pipe_count=62,
        pump_count=PUMP_COUNT,
        status=NetworkStatus.ACTIVE,
    )

    await repo.create_training_state(
        network.id,
        algorithm=Algorithm.DQN,
        status=TrainingStatus.TRAINING,
        current_episode=2847,
        total_episodes=3000,
        current_reward=2341.7,
        best_reward=2456.3,
        learning_rate=0.001,
        exploration=0.05,
    )

    for i in range(1, PUMP_COUNT + 1):
        running = i <= RUNNING_PUMPS
        await repo.create_pump(
            network.id,
            name=f"Pump Station {chr(64 + i)}",
            external_ref=f"P{i}",
            status=PumpStatus.ON if running else PumpStatus.OFF,
            speed=round(60 + rng.random() * 40, 1) if running else 0.0,
            power=round(10 + rng.random() * 20, 1) if running else 0.0,
            flow=round(50 + rng.random() * 100, 1) if running else 0.0,
            head=round(30 + rng.random() * 20, 1) if running else 0.0,
        )

    for i in range(1, VALVE_COUNT + 1):
        await repo.create_valve(
            network.id,
            name=f"Valve {i}",
            external_ref=f"V{i}",
            status=ValveStatus.OPEN,
            position=round(50 + rng.random() * 50, 1),
        )

    now = utcnow()
    for index, (event_type, title, description) in enumerate(SAMPLE_EVENTS):
        await repo.create_event(
            network.id, event_type, title, description,
            timestamp=now - timedelta(minutes=15 * (index + 1)),
        )

    repo.reserve_ids(ID_FLOOR)
    logger.info(
        "Seeded network %d: %d pumps, %d valves, next id %d",
        network.id, PUMP_COUNT, VALVE_COUNT, repo.next_id,
    )
    return network
