from conftest import FakeRemote
from services.pending_ops_store import PendingOperation
from services.remote import TransientFailure
from services.sync_engine import RunState
from services.sync_scheduler import SyncScheduler, next_delay


def test_next_delay_doubles_and_caps():
    assert next_delay(60, 0, 900) == 60
    assert next_delay(60, 1, 900) == 120
    assert next_delay(60, 3, 900) == 480
    assert next_delay(60, 4, 900) == 900
    assert next_delay(60, 10, 900) == 900


def test_tick_skips_when_queue_empty(store, engine, remote):
    scheduler = SyncScheduler(engine, store.count, interval=30, max_delay=600)
    assert scheduler.tick() is None
    assert remote.calls == []
    assert engine.last_attempt_at is None


def test_failures_back_off_and_success_resets(store, engine):
    engine.remote = FakeRemote(default=TransientFailure("gateway timeout", kind="server"))
    store.append(PendingOperation(id="op-1", action="update", record={}, target_key="A", max_retries=10))
    scheduler = SyncScheduler(engine, store.count, interval=30, max_delay=100)

    scheduler.tick()
    assert scheduler.delay == 60
    scheduler.tick()
    assert scheduler.delay == 100

    engine.remote = FakeRemote()
    session = scheduler.tick()
    assert session.state is RunState.COMPLETED
    assert session.trigger == "timer"
    assert scheduler.failures == 0
    assert scheduler.delay == 30


def test_offline_tick_backs_off(store, engine, monitor):
    store.append(PendingOperation(id="op-1", action="create", record={}))
    monitor.report(False)
    scheduler = SyncScheduler(engine, store.count, interval=10, max_delay=1000)

    session = scheduler.tick()

    assert session.reason == "offline"
    assert scheduler.failures == 1
    assert scheduler.delay == 20
    assert store.count() == 1
