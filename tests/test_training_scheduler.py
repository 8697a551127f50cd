import asyncio

import pytest

from hydrocontrol.core.entities import Algorithm, EventType, TrainingStatus, TrainingUpdate
from hydrocontrol.core.errors import (
    AlreadyTraining, ModelNotFound, NotFound, NotTraining, PolicyUnavailable, ValidationFailed,
)
from hydrocontrol.core.policy import SimulatedPolicyEngine, decode_checkpoint
from hydrocontrol.services.training_scheduler import SchedulerConfig, TrainingScheduler

IDLE = SchedulerConfig(step_interval=3600)


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


async def titles(repo, network_id):
    return [e.title for e in await repo.recent_events(network_id, limit=100)]


@pytest.mark.asyncio
async def test_provision_creates_paused_state(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id, Algorithm.PPO, total_episodes=500)
    assert state.status == TrainingStatus.PAUSED
    assert state.current_episode == 0
    assert state.algorithm == Algorithm.PPO
    assert "DRL Model Created" in await titles(repo, network.id)

    with pytest.raises(ValidationFailed):
        await scheduler.provision(network.id)
    with pytest.raises(NotFound):
        await scheduler.provision(999)


@pytest.mark.asyncio
async def test_provision_validates_parameters(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    with pytest.raises(ValidationFailed):
        await scheduler.provision(network.id, total_episodes=0)
    with pytest.raises(ValidationFailed):
        await scheduler.provision(network.id, learning_rate=0)
    with pytest.raises(ValidationFailed):
        await scheduler.provision(network.id, exploration=1.5)
    assert await repo.get_training_state_by_network(network.id) is None


@pytest.mark.asyncio
async def test_start_twice_fails_with_already_training(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)

    started = await scheduler.start(state.id)
    assert started.status == TrainingStatus.TRAINING
    assert scheduler.is_active(state.id)
    with pytest.raises(AlreadyTraining):
        await scheduler.start(state.id)
    assert scheduler.active_models == [state.id]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_pause_without_start_fails_with_not_training(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)
    with pytest.raises(NotTraining):
        await scheduler.pause(state.id)
    with pytest.raises(ModelNotFound):
        await scheduler.pause(999)


@pytest.mark.asyncio
async def test_pause_stops_the_task_and_records_warning(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)
    await scheduler.start(state.id)

    paused = await scheduler.pause(state.id)
    assert paused.status == TrainingStatus.PAUSED
    assert not scheduler.is_active(state.id)
    events = await repo.recent_events(network.id)
    assert events[0].title == "DRL Training Paused"
    assert events[0].type == EventType.WARNING
    with pytest.raises(NotTraining):
        await scheduler.pause(state.id)


@pytest.mark.asyncio
async def test_stored_training_status_without_task_can_be_started(repo, network, policy):
    state = await repo.create_training_state(network.id, status=TrainingStatus.TRAINING)
    scheduler = TrainingScheduler(repo, policy, IDLE)
    with pytest.raises(NotTraining):
        await scheduler.pause(state.id)
    await scheduler.start(state.id)
    assert scheduler.is_active(state.id)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_final_step_completes_training(repo, network, policy):
    state = await repo.create_training_state(
        network.id, status=TrainingStatus.TRAINING, current_episode=2999, total_episodes=3000,
    )
    scheduler = TrainingScheduler(repo, policy, IDLE)
    policy.rewards = [2500.0]

    assert await scheduler.step(state.id) is False
    done = await repo.get_training_state(state.id)
    assert done.current_episode == 3000
    assert done.status == TrainingStatus.COMPLETED

    events = await repo.recent_events(network.id)
    completed = [e for e in events if e.type == EventType.SUCCESS]
    assert len(completed) == 1
    assert completed[0].title == "DRL Training Completed"
    assert completed[0].description == "Training completed with final reward: 2500.00"

    # Further ticks are no-ops
    assert await scheduler.step(state.id) is False
    assert (await repo.get_training_state(state.id)).current_episode == 3000
    assert len(await repo.recent_events(network.id)) == len(events)

    with pytest.raises(ValidationFailed):
        await scheduler.start(state.id)


@pytest.mark.asyncio
async def test_best_reward_and_exploration_are_monotonic(repo, network, policy):
    state = await repo.create_training_state(
        network.id, status=TrainingStatus.TRAINING, exploration=0.05, total_episodes=100,
    )
    scheduler = TrainingScheduler(repo, policy, SchedulerConfig(step_interval=3600, exploration_floor=0.02))
    policy.rewards = [10.0, 5.0, 20.0, 3.0, -7.0]
    policy.exploration_delta = 0.01

    bests, explorations = [], []
    for _ in range(5):
        assert await scheduler.step(state.id)
        current = await repo.get_training_state(state.id)
        bests.append(current.best_reward)
        explorations.append(current.exploration)
        assert current.best_reward >= current.current_reward

    assert bests == [10.0, 10.0, 20.0, 20.0, 20.0]
    assert explorations == sorted(explorations, reverse=True)
    assert explorations[-1] == pytest.approx(0.02)
    assert min(explorations) >= 0.02


@pytest.mark.asyncio
async def test_negative_exploration_delta_never_raises_exploration(repo, network, policy):
    state = await repo.create_training_state(network.id, status=TrainingStatus.TRAINING, exploration=0.3)
    scheduler = TrainingScheduler(repo, policy, IDLE)
    policy.exploration_delta = -0.5
    await scheduler.step(state.id)
    assert (await repo.get_training_state(state.id)).exploration == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_policy_failure_skips_the_tick(repo, network, policy):
    state = await repo.create_training_state(network.id, status=TrainingStatus.TRAINING, current_episode=7)
    scheduler = TrainingScheduler(repo, policy, IDLE)
    policy.fail_train = True
    assert await scheduler.step(state.id) is True
    assert await repo.get_training_state(state.id) == state


@pytest.mark.asyncio
async def test_milestone_event_every_interval(repo, network, policy):
    state = await repo.create_training_state(network.id, status=TrainingStatus.TRAINING, current_episode=99)
    scheduler = TrainingScheduler(repo, policy, IDLE)
    policy.rewards = [150.0]
    await scheduler.step(state.id)
    events = await repo.recent_events(network.id)
    assert events[0].title == "Training Episode 100 Completed"
    assert events[0].description == "Current reward: 150.00, Best: 150.00"

    await scheduler.step(state.id)
    assert len(await repo.recent_events(network.id)) == 1


@pytest.mark.asyncio
async def test_step_is_noop_unless_training(repo, network, policy):
    state = await repo.create_training_state(network.id, status=TrainingStatus.PAUSED)
    scheduler = TrainingScheduler(repo, policy, IDLE)
    assert await scheduler.step(state.id) is False
    assert await scheduler.step(999) is False
    assert policy.train_calls == 0


@pytest.mark.asyncio
async def test_save_round_trips_episode_and_reward(repo, network):
    scheduler = TrainingScheduler(repo, SimulatedPolicyEngine(), IDLE)
    state = await repo.create_training_state(
        network.id, algorithm=Algorithm.SAC, current_episode=1234, current_reward=876.5,
    )
    saved = await scheduler.save(state.id)

    assert saved.checkpoint.episode == 1234
    assert saved.checkpoint.reward == 876.5
    payload = decode_checkpoint((await repo.get_training_state(state.id)).checkpoint.data)
    assert payload["episode"] == 1234
    assert payload["reward"] == 876.5
    assert payload["algorithm"] == "SAC"
    events = await repo.recent_events(network.id)
    assert events[0].title == "DRL Model Saved"
    assert events[0].description == "Model saved at episode 1234"


@pytest.mark.asyncio
async def test_save_errors(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    with pytest.raises(ModelNotFound):
        await scheduler.save(999)

    state = await scheduler.provision(network.id)
    policy.fail_checkpoint = True
    with pytest.raises(PolicyUnavailable):
        await scheduler.save(state.id)
    assert (await repo.get_training_state(state.id)).checkpoint is None


@pytest.mark.asyncio
async def test_timer_steps_until_paused(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, SchedulerConfig(step_interval=0.01))
    state = await scheduler.provision(network.id)
    await scheduler.start(state.id)

    async def three_episodes():
        return (await repo.get_training_state(state.id)).current_episode >= 3

    await wait_for(three_episodes)
    paused = await scheduler.pause(state.id)
    await asyncio.sleep(0.05)
    assert (await repo.get_training_state(state.id)).current_episode == paused.current_episode


@pytest.mark.asyncio
async def test_timer_runs_to_completion(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, SchedulerConfig(step_interval=0.005))
    state = await scheduler.provision(network.id, total_episodes=4)
    await scheduler.start(state.id)

    async def completed():
        return (await repo.get_training_state(state.id)).status == TrainingStatus.COMPLETED

    await wait_for(completed)
    await asyncio.sleep(0.02)
    final = await repo.get_training_state(state.id)
    assert final.current_episode == 4
    assert not scheduler.is_active(state.id)
    assert "DRL Training Paused" not in await titles(repo, network.id)


@pytest.mark.asyncio
async def test_start_replaces_a_stray_task(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)
    await scheduler.start(state.id)
    stray = scheduler._tasks[state.id]

    # Status lost behind the scheduler's back, e.g. after a crash
    await repo.update_training_state(state.id, TrainingUpdate(status=TrainingStatus.PAUSED))
    await scheduler.start(state.id)
    await asyncio.sleep(0)

    assert stray.cancelled() or stray.done()
    assert scheduler._tasks[state.id] is not stray
    assert scheduler.active_models == [state.id]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_pause_waits_for_in_flight_step(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)
    await scheduler.start(state.id)

    policy.gate = asyncio.Event()
    step = asyncio.create_task(scheduler.step(state.id))
    await policy.entered.wait()
    pause = asyncio.create_task(scheduler.pause(state.id))
    await asyncio.sleep(0.01)
    assert not pause.done()

    policy.gate.set()
    assert await step is True
    paused = await pause
    assert paused.current_episode == 1
    assert paused.status == TrainingStatus.PAUSED
    assert await scheduler.step(state.id) is False


@pytest.mark.asyncio
async def test_shutdown_cancels_every_task(repo, network, policy):
    scheduler = TrainingScheduler(repo, policy, IDLE)
    state = await scheduler.provision(network.id)
    await scheduler.start(state.id)
    task = scheduler._tasks[state.id]
    await scheduler.shutdown()
    assert task.cancelled()
    assert scheduler.active_models == []


@pytest.mark.parametrize("values", [{"step_interval": 0}, {"step_interval": -1.0}, {"milestone_interval": 0}])
def test_invalid_scheduler_config_is_rejected(values):
    with pytest.raises(ValueError):
        SchedulerConfig(**values)
