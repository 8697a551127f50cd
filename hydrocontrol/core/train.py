"""
train.py — Offline training run & learning-curve report
========================================================
Runs the policy's training step back-to-back (no timers, no server) under
the same rules the TrainingScheduler enforces:
    - best reward never decreases
    - exploration never increases and never drops below the floor
then plots reward / best reward / exploration against episode.

Usage:
    python -m hydrocontrol.core.train
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import matplotlib
matplotlib.use("Agg")  # headless rendering
import matplotlib.pyplot as plt
import numpy as np

from .entities import Algorithm, TrainingState, TrainingStatus
from .errors import PolicyError
from .policy import PolicyConfig, PolicyEngine, SimulatedPolicyEngine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

TRAINING_EPISODES = 3000
EXPLORATION_FLOOR = 0.01
SEED = 42
OUTPUT_DIR = Path.cwd() / "data" / "experiments"


@dataclass(frozen=True)
class EpisodeRecord:
    episode: int
    reward: float
    best_reward: float
    exploration: float


# ---------------------------------------------------------------------------
# Utility: moving average for smooth learning curves
# ---------------------------------------------------------------------------

def moving_average(values: list[float], window: int = 100) -> list[float]:
    """Compute a simple moving average for a list of values."""
    if not values:
        return []
    if len(values) < window:
        window = max(1, len(values))
    cumsum = np.cumsum(values)
    cumsum = np.insert(cumsum, 0, 0)
    return ((cumsum[window:] - cumsum[:-window]) / window).tolist()


# ---------------------------------------------------------------------------
# Offline run
# ---------------------------------------------------------------------------

async def run_offline_training(
    policy: PolicyEngine,
    episodes: int,
    algorithm: Algorithm = Algorithm.DQN,
    exploration: float = 1.0,
    exploration_floor: float = EXPLORATION_FLOOR,
) -> list[EpisodeRecord]:
    """Step `policy` for `episodes` episodes; failed steps are retried on the next episode."""
    state = TrainingState(
        id=0, network_id=0, algorithm=algorithm, status=TrainingStatus.TRAINING,
        total_episodes=episodes, exploration=exploration,
    )
    history: list[EpisodeRecord] = []
    skipped = 0
    while state.current_episode < episodes:
        try:
            result = await policy.train_step(state)
        except PolicyError as exc:
            skipped += 1
            if skipped > episodes:
                raise
            logger.warning("Episode %d skipped: %s", state.current_episode + 1, exc)
            continue

        decayed = max(exploration_floor, state.exploration - max(0.0, result.exploration_delta))
        state = replace(
            state,
            current_episode=state.current_episode + 1,
            current_reward=result.reward,
            best_reward=max(state.best_reward, result.reward),
            exploration=min(state.exploration, decayed),
        )
        history.append(EpisodeRecord(
            state.current_episode, state.current_reward, state.best_reward, state.exploration,
        ))
    return history


# ---------------------------------------------------------------------------
# Plot: learning curve
# ---------------------------------------------------------------------------

def plot_learning_curve(history: list[EpisodeRecord], output_path: Path, window: int = 100) -> None:
    """
    Plot two charts:
      1. Episode reward (raw + smoothed moving average) with best reward
      2. Exploration rate over training
    """
    episodes = [r.episode for r in history]
    rewards = [r.reward for r in history]
    smoothed = moving_average(rewards, window=window)
    offset = len(episodes) - len(smoothed)

    fig, axes = plt.subplots(2, 1, figsize=(12, 8), dpi=120)

    ax1 = axes[0]
    ax1.plot(episodes, rewards, alpha=0.15, color="#636EFA", linewidth=0.5, label="Raw reward")
    ax1.plot(episodes[offset:], smoothed, color="#EF553B", linewidth=2,
             label=f"Moving avg ({window} ep)")
    ax1.plot(episodes, [r.best_reward for r in history], color="#00CC96",
             linestyle="--", linewidth=1, label="Best reward")
    ax1.set_xlabel("Episode")
    ax1.set_ylabel("Reward")
    ax1.set_title("DRL Training Curve — Reward per Episode")
    ax1.legend()
    ax1.grid(True, alpha=0.3)

    ax2 = axes[1]
    ax2.plot(episodes, [r.exploration for r in history], color="#AB63FA", linewidth=2)
    ax2.set_xlabel("Episode")
    ax2.set_ylabel("Exploration")
    ax2.set_title("Exploration Rate Over Training")
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path)
    plt.close(fig)
    logger.info("Learning curve saved → %s", output_path)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def main(episodes: int = TRAINING_EPISODES, output_dir: Optional[Path] = None) -> list[EpisodeRecord]:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s — %(message)s")

    print("\n" + "=" * 65)
    print("  HydroControl — Offline DRL Training Run")
    print("=" * 65)

    policy = SimulatedPolicyEngine(PolicyConfig(seed=SEED))
    print(f"\n  Training for {episodes} episodes...\n")
    history = asyncio.run(run_offline_training(policy, episodes))

    plot_path = (output_dir or OUTPUT_DIR) / "learning_curve.png"
    plot_learning_curve(history, plot_path)

    if history:
        last = history[-1]
        print(f"  Final reward:      {last.reward:>12.2f}")
        print(f"  Best reward:       {last.best_reward:>12.2f}")
        print(f"  Final exploration: {last.exploration:>12.6f}")
    print(f"  Learning curve saved → {plot_path}\n")
    return history


if __name__ == "__main__":
    main()
