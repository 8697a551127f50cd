import pytest

from hydrocontrol.core.policy import PolicyConfig, SimulatedPolicyEngine
from hydrocontrol.core.train import (
    main, moving_average, plot_learning_curve, run_offline_training,
)


def test_moving_average():
    assert moving_average([1.0, 2.0, 3.0, 4.0], window=2) == [1.5, 2.5, 3.5]
    assert moving_average([5.0, 7.0], window=10) == [6.0]
    assert moving_average([]) == []


@pytest.mark.asyncio
async def test_offline_run_keeps_training_invariants():
    policy = SimulatedPolicyEngine(PolicyConfig(seed=11, exploration_decay=0.9))
    history = await run_offline_training(policy, episodes=300, exploration=0.5, exploration_floor=0.05)

    assert [r.episode for r in history] == list(range(1, 301))
    bests = [r.best_reward for r in history]
    explorations = [r.exploration for r in history]
    assert bests == sorted(bests)
    assert explorations == sorted(explorations, reverse=True)
    assert min(explorations) >= 0.05
    assert all(r.best_reward >= r.reward for r in history)


@pytest.mark.asyncio
async def test_offline_run_retries_failed_steps(policy):
    policy.rewards = [1.0, 2.0, 3.0]
    calls = {"n": 0}
    original = policy.train_step

    async def flaky(state):
        calls["n"] += 1
        policy.fail_train = calls["n"] == 2
        return await original(state)

    policy.train_step = flaky
    history = await run_offline_training(policy, episodes=3)
    assert [r.reward for r in history] == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_learning_curve_is_written(tmp_path):
    policy = SimulatedPolicyEngine(PolicyConfig(seed=2))
    history = await run_offline_training(policy, episodes=150)
    output = tmp_path / "plots" / "curve.png"
    plot_learning_curve(history, output, window=20)
    assert output.exists()
    assert output.stat().st_size > 0


def test_main_entry_point(tmp_path):
    history = main(episodes=50, output_dir=tmp_path)
    assert len(history) == 50
    assert (tmp_path / "learning_curve.png").exists()
