from datetime import datetime, timezone

from carecoord.reminders.dispatcher import ReminderDispatcher, build_message
from carecoord.reminders.models import MedicationReminder
from carecoord.reminders.repository import list_attempts

from conftest import RecordingTransport

DUE_AT = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def _reminder(db, **fields):
    values = {
        "medication_name": "Metformin",
        "created_by": "nurse-1",
        "entry_report_id": "entry-9",
        "start_date": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "schedule": {"type": "recurring", "timesOfDay": ["08:00"], "daysOfWeek": [0, 1, 2, 3, 4, 5, 6], "timezone": "UTC"},
        "notify_channels": ["in_app"],
    }
    values.update(fields)
    reminder = MedicationReminder(**values)
    db.add(reminder)
    db.commit()
    return reminder


def test_message_prefers_instructions_then_dosage():
    r = MedicationReminder(medication_name="Metformin", instructions="Take with food", dosage="500mg")
    assert build_message(r) == ("Medication Reminder: Metformin", "Take with food")

    r.instructions = None
    assert build_message(r) == ("Medication Reminder: Metformin", "Please take 500mg")

    r.dosage = None
    assert build_message(r) == ("Medication Reminder: Metformin", "Please take your medication")


def test_dispatch_sends_to_creator_and_records_attempt(db, dispatcher, transports):
    reminder = _reminder(db, instructions="Take with breakfast")

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert result.status == "dispatched"
    assert result.outcome == "sent"
    assert result.ok
    sent = transports["in_app"].sent
    assert len(sent) == 1
    assert sent[0]["target"] == "nurse-1"
    assert sent[0]["title"] == "Medication Reminder: Metformin"
    assert sent[0]["body"] == "Take with breakfast"
    assert sent[0]["meta"] == {"reminder_id": reminder.id, "entry_report_id": "entry-9"}

    attempts = list_attempts(db, reminder.id)
    assert len(attempts) == 1
    assert attempts[0].id == result.attempt_id
    assert attempts[0].outcome == "sent"
    assert attempts[0].due_at == DUE_AT
    assert attempts[0].channels == ["in_app"]


def test_empty_channels_default_to_in_app(db, dispatcher, transports):
    reminder = _reminder(db, notify_channels=[])

    dispatcher.dispatch(db, reminder, DUE_AT)

    assert len(transports["in_app"].sent) == 1
    assert transports["email"].sent == []


def test_failing_channel_does_not_stop_others(db, transports):
    transports["email"] = RecordingTransport("email", error=RuntimeError("smtp down"))
    dispatcher = ReminderDispatcher(transports)
    reminder = _reminder(db, notify_channels=["email", "in_app", "sms"])

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert len(transports["in_app"].sent) == 1
    assert len(transports["sms"].sent) == 1
    # in_app is primary and succeeded
    assert result.outcome == "sent"
    by_channel = {r.channel: r for r in result.channel_results}
    assert by_channel["email"].outcome == "failed"
    assert "smtp down" in by_channel["email"].error

    attempt = list_attempts(db, reminder.id)[0]
    assert attempt.outcome == "sent"
    assert "email: smtp down" in attempt.error


def test_primary_failure_marks_attempt_failed(db, transports):
    transports["in_app"] = RecordingTransport("in_app", error=RuntimeError("db gone"))
    dispatcher = ReminderDispatcher(transports)
    reminder = _reminder(db, notify_channels=["in_app", "push"])

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert result.outcome == "failed"
    assert not result.ok
    assert len(transports["push"].sent) == 1
    assert list_attempts(db, reminder.id)[0].outcome == "failed"


def test_first_channel_is_primary_without_in_app(db, transports):
    transports["sms"] = RecordingTransport("sms", error=TimeoutError("sns timed out"))
    dispatcher = ReminderDispatcher(transports)
    reminder = _reminder(db, notify_channels=["sms", "email"])

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert result.outcome == "timeout"
    assert list_attempts(db, reminder.id)[0].outcome == "timeout"


def test_unknown_channel_fails_that_channel_only(db, transports):
    del transports["push"]
    dispatcher = ReminderDispatcher(transports)
    reminder = _reminder(db, notify_channels=["in_app", "push"])

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert result.outcome == "sent"
    assert [r.outcome for r in result.channel_results] == ["sent", "failed"]


def test_missing_creator_is_skipped_without_attempt(db, dispatcher, transports):
    reminder = _reminder(db, created_by=None)

    result = dispatcher.dispatch(db, reminder, DUE_AT)

    assert result.status == "skipped"
    assert result.attempt_id is None
    assert transports["in_app"].sent == []
    assert list_attempts(db, reminder.id) == []
