import asyncio

import pytest

from hydrocontrol.core.entities import Algorithm, MetricsReading, TrainingStatus
from hydrocontrol.core.errors import NotFound
from hydrocontrol.services.status_broadcaster import (
    NETWORK_STATUS, TRAINING_PROGRESS, BroadcastConfig, StatusBroadcaster,
)

FAST = BroadcastConfig(status_interval=0.05, progress_interval=0.02)


class Recorder:
    """Collects pushed messages with their loop timestamps."""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.messages: list[dict] = []
        self.times: dict[str, list[float]] = {NETWORK_STATUS: [], TRAINING_PROGRESS: []}
        self.delay = delay
        self.fail = fail

    async def __call__(self, message: dict) -> None:
        if self.fail:
            raise ConnectionError("client gone")
        self.times[message["type"]].append(asyncio.get_running_loop().time())
        self.messages.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)

    def of_type(self, message_type: str) -> list[dict]:
        return [m["data"] for m in self.messages if m["type"] == message_type]


@pytest.mark.asyncio
async def test_network_status_snapshot(repo, network):
    broadcaster = StatusBroadcaster(repo)
    snapshot = await broadcaster.network_status(network.id)
    assert snapshot.active_pumps == 2
    assert snapshot.pump_count == 3
    assert snapshot.energy_efficiency == 0.0
    assert snapshot.status == "active"

    await repo.create_metrics(network.id, MetricsReading(50.0, 90.0, 60.0, 97.0, 83.5))
    assert (await broadcaster.network_status(network.id)).energy_efficiency == 83.5
    assert await broadcaster.network_status(999) is None


@pytest.mark.asyncio
async def test_training_progress_snapshot(repo, network):
    broadcaster = StatusBroadcaster(repo)
    assert await broadcaster.training_progress(network.id) is None

    state = await repo.create_training_state(
        network.id, algorithm=Algorithm.TD3, status=TrainingStatus.TRAINING,
        current_episode=750, total_episodes=3000, current_reward=12.5,
    )
    snapshot = await broadcaster.training_progress(network.id)
    assert snapshot.model_id == state.id
    assert snapshot.progress == pytest.approx(25.0)
    assert snapshot.algorithm == "TD3"
    assert snapshot.model_dump(by_alias=True)["totalEpisodes"] == 3000


@pytest.mark.asyncio
async def test_subscribe_publishes_both_snapshots_immediately(repo, network):
    await repo.create_training_state(network.id)
    broadcaster = StatusBroadcaster(repo, BroadcastConfig(status_interval=10, progress_interval=10))
    recorder = Recorder()
    sub = await broadcaster.subscribe(network.id, recorder)
    await asyncio.sleep(0.01)

    assert {m["type"] for m in recorder.messages} == {NETWORK_STATUS, TRAINING_PROGRESS}
    status = recorder.of_type(NETWORK_STATUS)[0]
    assert status["networkId"] == network.id
    assert status["activePumps"] == 2
    sub.close()
    await sub.wait_closed()


@pytest.mark.asyncio
async def test_no_training_state_sends_nothing_for_progress(repo, network):
    broadcaster = StatusBroadcaster(repo, FAST)
    recorder = Recorder()
    sub = await broadcaster.subscribe(network.id, recorder)
    await asyncio.sleep(0.12)
    sub.close()
    await sub.wait_closed()

    assert recorder.of_type(TRAINING_PROGRESS) == []
    assert len(recorder.of_type(NETWORK_STATUS)) >= 2


@pytest.mark.asyncio
async def test_close_is_idempotent_and_isolated(repo, network):
    broadcaster = StatusBroadcaster(repo, FAST)
    first, second = Recorder(), Recorder()
    sub_a = await broadcaster.subscribe(network.id, first)
    sub_b = await broadcaster.subscribe(network.id, second)
    assert broadcaster.subscriber_count == 2

    assert sub_a.close() is True
    assert sub_a.close() is False
    await sub_a.wait_closed()
    assert all(t.done() for t in sub_a.tasks)
    assert broadcaster.subscriber_count == 1

    received = len(second.messages)
    await asyncio.sleep(0.12)
    assert len(second.messages) > received
    assert not any(t.done() for t in sub_b.tasks)

    sent_after_close = len(first.messages)
    await asyncio.sleep(0.06)
    assert len(first.messages) == sent_after_close
    await broadcaster.close_all()
    assert broadcaster.subscriber_count == 0
    assert sub_b.closed


@pytest.mark.asyncio
async def test_send_failure_closes_the_subscription(repo, network):
    broadcaster = StatusBroadcaster(repo, FAST)
    sub = await broadcaster.subscribe(network.id, Recorder(fail=True))
    await asyncio.sleep(0.02)
    await sub.wait_closed()
    assert sub.closed
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_slow_consumer_drops_ticks_instead_of_bursting(repo, network):
    interval = 0.1
    broadcaster = StatusBroadcaster(repo, BroadcastConfig(status_interval=interval, progress_interval=100))
    recorder = Recorder(delay=0.25)
    sub = await broadcaster.subscribe(network.id, recorder)
    await asyncio.sleep(0.75)
    sub.close()
    await sub.wait_closed()

    times = recorder.times[NETWORK_STATUS]
    assert 2 <= len(times) <= 4
    start = times[0]
    for previous, current in zip(times, times[1:]):
        assert current - previous >= 0.25 - 0.01
        ticks = (current - start) / interval
        assert abs(ticks - round(ticks)) < 0.3


@pytest.mark.asyncio
async def test_subscribe_to_unknown_network(repo):
    broadcaster = StatusBroadcaster(repo)
    with pytest.raises(NotFound):
        await broadcaster.subscribe(999, Recorder())
    assert broadcaster.subscriber_count == 0


@pytest.mark.parametrize("status_interval, progress_interval", [(0.0, 1.0), (1.0, 0.0), (-0.5, 1.0)])
def test_non_positive_intervals_are_rejected(status_interval, progress_interval):
    with pytest.raises(ValueError):
        BroadcastConfig(status_interval=status_interval, progress_interval=progress_interval)
