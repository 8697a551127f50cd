from datetime import timedelta

import pytest

from hydrocontrol.core.entities import (
    DeviceKind, EventType, MetricsReading, PumpStatus, PumpUpdate, TrainingUpdate,
    ValveUpdate, utcnow,
)
from hydrocontrol.core.errors import IntegrityError
from hydrocontrol.core.repository import Repository

from conftest import make_network

READING = MetricsReading(50.0, 100.0, 70.0, 98.0, 80.0)


@pytest.mark.asyncio
async def test_ids_come_from_one_counter(repo):
    network = await make_network(repo, speeds=(50.0,), statuses=(PumpStatus.ON,))
    pump = (await repo.list_devices(network.id))[0]
    event = await repo.create_event(network.id, EventType.INFO, "hello")
    state = await repo.create_training_state(network.id)
    assert [network.id, pump.id, event.id, state.id] == [1, 2, 3, 4]

    repo.reserve_ids(100)
    sample = await repo.create_metrics(network.id, READING)
    assert sample.id == 100
    repo.reserve_ids(50)
    assert repo.next_id == 101


@pytest.mark.asyncio
async def test_unknown_ids_return_none(repo):
    assert await repo.get_network(42) is None
    assert await repo.get_device(42) is None
    assert await repo.update_device(42, PumpUpdate(speed=10)) is None
    assert await repo.update_training_state(42, TrainingUpdate(current_episode=1)) is None
    assert await repo.acknowledge_event(42) is None
    assert await repo.network_view(42) is None


@pytest.mark.asyncio
async def test_referential_and_uniqueness_violations(repo, network):
    with pytest.raises(IntegrityError):
        await repo.create_pump(999, "Ghost", "P9")
    with pytest.raises(IntegrityError):
        await repo.create_pump(network.id, "Duplicate", "P1")
    await repo.create_training_state(network.id)
    with pytest.raises(IntegrityError):
        await repo.create_training_state(network.id)


@pytest.mark.asyncio
async def test_partial_update_touches_only_supplied_fields(repo, network):
    pump = (await repo.list_devices(network.id, DeviceKind.PUMP))[0]
    updated = await repo.update_device(pump.id, PumpUpdate(name="Renamed"))
    assert updated.name == "Renamed"
    assert updated.speed == pump.speed
    assert updated.status == pump.status
    assert await repo.get_device(pump.id) == updated


@pytest.mark.asyncio
async def test_kind_mismatch_is_rejected_without_write(repo, network):
    pump = (await repo.list_devices(network.id))[0]
    with pytest.raises(IntegrityError):
        await repo.update_device(pump.id, ValveUpdate(position=10))
    assert await repo.get_device(pump.id) == pump


@pytest.mark.asyncio
async def test_bulk_update_is_all_or_nothing(repo):
    network = await make_network(repo, valve_positions=(40.0,))
    pumps = await repo.list_devices(network.id, DeviceKind.PUMP)
    valve = (await repo.list_devices(network.id, DeviceKind.VALVE))[0]

    updates = {p.id: PumpUpdate(status=PumpStatus.OFF, speed=0.0) for p in pumps}
    updates[valve.id] = PumpUpdate(speed=0.0)
    with pytest.raises(IntegrityError):
        await repo.bulk_update_devices(updates)
    assert await repo.list_devices(network.id, DeviceKind.PUMP) == pumps

    del updates[valve.id]
    updates[999] = PumpUpdate(speed=0.0)
    written = await repo.bulk_update_devices(updates)
    assert [p.id for p in written] == [p.id for p in pumps]
    assert all(p.speed == 0.0 and p.status == PumpStatus.OFF for p in written)


@pytest.mark.asyncio
async def test_metrics_history_is_time_bounded_and_oldest_first(repo, network):
    now = utcnow()
    old = await repo.create_metrics(network.id, READING, timestamp=now - timedelta(hours=30))
    late = await repo.create_metrics(network.id, READING, timestamp=now - timedelta(minutes=5))
    early = await repo.create_metrics(network.id, READING, timestamp=now - timedelta(hours=2))

    history = await repo.metrics_history(network.id, hours=24, now=now)
    assert [m.id for m in history] == [early.id, late.id]
    assert (await repo.latest_metrics(network.id)).id == late.id
    assert old.id not in [m.id for m in history]


@pytest.mark.asyncio
async def test_recent_events_newest_first_with_limit(repo, network):
    now = utcnow()
    for minutes in (30, 10, 20):
        await repo.create_event(
            network.id, EventType.INFO, f"{minutes} min ago",
            timestamp=now - timedelta(minutes=minutes),
        )
    events = await repo.recent_events(network.id, limit=2)
    assert [e.title for e in events] == ["10 min ago", "20 min ago"]


@pytest.mark.asyncio
async def test_acknowledge_flips_once(repo, network):
    event = await repo.create_event(network.id, EventType.WARNING, "check me")
    assert event.acknowledged is False
    first = await repo.acknowledge_event(event.id)
    second = await repo.acknowledge_event(event.id)
    assert first.acknowledged and second.acknowledged
    assert first == second


@pytest.mark.asyncio
async def test_training_update_bumps_updated_at(repo, network):
    state = await repo.create_training_state(network.id)
    updated = await repo.update_training_state(state.id, TrainingUpdate(current_episode=5))
    assert updated.current_episode == 5
    assert updated.updated_at >= state.updated_at
    assert updated.created_at == state.created_at
    assert (await repo.get_training_state_by_network(network.id)).id == state.id


@pytest.mark.asyncio
async def test_network_view_reads_everything_at_once():
    repo = Repository(first_id=10)
    network = await make_network(repo, valve_positions=(70.0,))
    sample = await repo.create_metrics(network.id, READING)
    view = await repo.network_view(network.id)
    assert view.network == network
    assert len(view.devices) == 4
    assert view.latest_metrics == sample
