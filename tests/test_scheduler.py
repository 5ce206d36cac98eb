import asyncio
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from carecoord.reminders.dispatcher import ReminderDispatcher
from carecoord.reminders.repository import find_due, get_reminder, list_attempts, save_reminder
from carecoord.reminders.scheduler import ReminderScheduler
from carecoord.reminders.schemas import ReminderUpdate
from carecoord.reminders.service import ReminderService

from conftest import RecordingTransport

UTC = timezone.utc
DAILY_8AM = {"type": "recurring", "timesOfDay": ["08:00"], "timezone": "UTC"}


@pytest.fixture
def scheduler(session_factory, dispatcher, clock):
    return ReminderScheduler(session_factory, dispatcher, clock=clock, interval_seconds=60, batch_size=200)


def test_tick_fires_due_reminders_only(scheduler, make_reminder, transports, clock, db):
    due = make_reminder(DAILY_8AM)
    later = make_reminder({"type": "recurring", "timesOfDay": ["09:00"], "timezone": "UTC"})
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    assert scheduler.tick() == 1

    assert len(transports["in_app"].sent) == 1
    db.expire_all()
    fired = get_reminder(db, due.id)
    assert fired.last_triggered_at == clock()
    assert fired.next_run_at == datetime(2024, 1, 2, 8, 0, tzinfo=UTC)
    assert get_reminder(db, later.id).last_triggered_at is None


def test_second_tick_at_same_instant_does_not_refire(scheduler, make_reminder, transports, clock):
    make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    assert scheduler.tick() == 1
    assert scheduler.tick() == 0
    assert len(transports["in_app"].sent) == 1


def test_one_time_retires_after_tick(scheduler, make_reminder, transports, clock, db):
    reminder = make_reminder({"type": "one_time", "at": "2024-01-01T08:00:00Z", "timezone": "UTC"})

    for minute in range(5):
        clock.set(datetime(2024, 1, 1, 8, minute, tzinfo=UTC))
        scheduler.tick()

    assert len(transports["in_app"].sent) == 1
    db.expire_all()
    retired = get_reminder(db, reminder.id)
    assert retired.active is False
    assert retired.next_run_at is None


def test_inactive_reminder_is_never_due(scheduler, service, make_reminder, nurse, transports, clock):
    reminder = make_reminder(DAILY_8AM)
    service.update_reminder(reminder.id, ReminderUpdate(active=False), nurse)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    assert scheduler.tick() == 0
    assert transports["in_app"].sent == []


def test_transport_failure_still_reschedules(session_factory, make_reminder, transports, clock, db):
    transports["in_app"] = RecordingTransport("in_app", error=ConnectionError("inbox down"))
    scheduler = ReminderScheduler(session_factory, ReminderDispatcher(transports), clock=clock)
    reminder = make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    assert scheduler.tick() == 1

    db.expire_all()
    assert get_reminder(db, reminder.id).next_run_at == datetime(2024, 1, 2, 8, 0, tzinfo=UTC)
    assert [a.outcome for a in list_attempts(db, reminder.id)] == ["failed"]


def test_one_reminder_failing_does_not_abort_batch(scheduler, make_reminder, transports, clock):
    first = make_reminder(DAILY_8AM)
    make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    real_dispatch = scheduler.dispatcher.dispatch

    def flaky_dispatch(db, reminder, due_at):
        if reminder.id == first.id:
            raise RuntimeError("boom")
        return real_dispatch(db, reminder, due_at)

    with patch.object(scheduler.dispatcher, "dispatch", side_effect=flaky_dispatch):
        assert scheduler.tick() == 1

    assert len(transports["in_app"].sent) == 1


def test_batch_size_caps_work_per_tick(session_factory, dispatcher, make_reminder, transports, clock):
    for _ in range(3):
        make_reminder(DAILY_8AM)
    scheduler = ReminderScheduler(session_factory, dispatcher, clock=clock, batch_size=2)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    assert scheduler.tick() == 2
    assert scheduler.tick() == 1
    assert scheduler.tick() == 0


def test_store_failure_aborts_tick(scheduler, make_reminder, transports, clock):
    make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    with patch("carecoord.reminders.scheduler.find_due", side_effect=RuntimeError("db unreachable")):
        assert scheduler.tick() == 0

    assert transports["in_app"].sent == []
    # Nothing was mutated, the next tick picks it up
    assert scheduler.tick() == 1


def test_manual_trigger_during_batch_is_not_sent_again(scheduler, session_factory, make_reminder, nurse, transports, clock, db):
    early = make_reminder({"type": "recurring", "timesOfDay": ["07:30"], "timezone": "UTC"})
    late = make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))

    def find_due_then_race(session, now, limit=200):
        loaded = find_due(session, now, limit=limit)
        other = session_factory()
        try:
            # Another writer edits the first reminder and a nurse sends the second by hand
            edited = get_reminder(other, early.id)
            save_reminder(other, edited, edited.version, {"dosage": "1000mg"})
            ReminderService(other, dispatcher=scheduler.dispatcher, clock=clock).trigger_now(late.id, nurse)
        finally:
            other.close()
        return loaded

    with patch("carecoord.reminders.scheduler.find_due", side_effect=find_due_then_race):
        assert scheduler.tick() == 0

    db.expire_all()
    assert len(transports["in_app"].sent) == 1
    assert len(list_attempts(db, late.id)) == 1
    assert get_reminder(db, late.id).next_run_at == datetime(2024, 1, 2, 8, 0, tzinfo=UTC)
    assert list_attempts(db, early.id) == []


def test_overlapping_tick_is_skipped(scheduler, make_reminder, clock):
    make_reminder(DAILY_8AM)
    clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))
    entered = threading.Event()
    release = threading.Event()
    results = []

    real_dispatch = scheduler.dispatcher.dispatch

    def slow_dispatch(db, reminder, due_at):
        entered.set()
        release.wait(timeout=5)
        return real_dispatch(db, reminder, due_at)

    with patch.object(scheduler.dispatcher, "dispatch", side_effect=slow_dispatch):
        worker = threading.Thread(target=lambda: results.append(scheduler.tick()))
        worker.start()
        assert entered.wait(timeout=5)
        assert scheduler.tick() == 0
        release.set()
        worker.join(timeout=5)

    assert results == [1]


def test_seconds_until_next_tick_is_utc_aligned(scheduler):
    assert scheduler.seconds_until_next_tick(datetime(2024, 1, 1, 8, 0, 15, tzinfo=UTC)) == 45
    assert scheduler.seconds_until_next_tick(datetime(2024, 1, 1, 8, 0, 0, tzinfo=UTC)) == 60


@pytest.mark.asyncio
async def test_start_and_stop(session_factory, dispatcher, clock):
    scheduler = ReminderScheduler(session_factory, dispatcher, clock=clock, interval_seconds=0.05)
    calls = []

    with patch.object(scheduler, "tick", side_effect=lambda: calls.append(1) or 0):
        await scheduler.start()
        assert scheduler.running
        await scheduler.start()  # no second loop
        await asyncio.sleep(0.3)
        await scheduler.stop()

    assert not scheduler.running
    assert len(calls) >= 1
    count = len(calls)
    await asyncio.sleep(0.15)
    assert len(calls) == count
