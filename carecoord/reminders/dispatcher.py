"""
Dispatch a single medication reminder through its notification channels and
record one DeliveryAttempt for the invocation.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from .models import MedicationReminder
from .repository import record_attempt
from .transports import NotificationTransport
from .metrics import (
    reminders_dispatch_success_total,
    reminders_dispatch_failed_total,
    reminders_channel_failed_total,
)

logger = logging.getLogger(__name__)

PRIMARY_CHANNEL = "in_app"

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_TIMEOUT = "timeout"


@dataclass
class ChannelResult:
    channel: str
    outcome: str
    error: Optional[str] = None


@dataclass
class DispatchResult:
    """status is "dispatched" or "skipped"; outcome is the recorded attempt outcome."""
    status: str
    outcome: Optional[str] = None
    channel_results: List[ChannelResult] = field(default_factory=list)
    attempt_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_SENT


def build_message(reminder: MedicationReminder) -> Tuple[str, str]:
    """Title and body shown to the recipient."""
    title = f"Medication Reminder: {reminder.medication_name}"
    if reminder.instructions:
        body = reminder.instructions
    elif reminder.dosage:
        body = f"Please take {reminder.dosage}"
    else:
        body = "Please take your medication"
    return title, body


def resolve_channels(reminder: MedicationReminder) -> List[str]:
    return list(reminder.notify_channels or []) or [PRIMARY_CHANNEL]


class ReminderDispatcher:
    def __init__(self, transports: Dict[str, NotificationTransport]):
        self.transports = transports

    def dispatch(
        self,
        db: Session,
        reminder: MedicationReminder,
        due_at: datetime,
    ) -> DispatchResult:
        # Recipient is the nurse/caretaker who created the reminder
        target = reminder.created_by
        if not target:
            logger.warning(f"[Dispatcher] Reminder {reminder.id} has no created_by, skipping")
            return DispatchResult(status="skipped", reason="no created_by")

        title, body = build_message(reminder)
        channels = resolve_channels(reminder)
        meta = {"reminder_id": reminder.id, "entry_report_id": reminder.entry_report_id}

        results = [self._send_one(ch, str(target), title, body, meta, reminder.id) for ch in channels]

        primary = PRIMARY_CHANNEL if PRIMARY_CHANNEL in channels else channels[0]
        primary_result = next(r for r in results if r.channel == primary)
        errors = "; ".join(f"{r.channel}: {r.error}" for r in results if r.error)

        attempt = record_attempt(
            db,
            reminder_id=reminder.id,
            due_at=due_at,
            channels=channels,
            outcome=primary_result.outcome,
            error=errors or None,
        )
        if primary_result.outcome == OUTCOME_SENT:
            reminders_dispatch_success_total.inc()
        else:
            reminders_dispatch_failed_total.inc()

        logger.info(
            f"[Dispatcher] Reminder {reminder.id} due_at={due_at.isoformat()} "
            f"outcome={primary_result.outcome} channels={channels}"
        )
        return DispatchResult(
            status="dispatched",
            outcome=primary_result.outcome,
            channel_results=results,
            attempt_id=attempt.id,
        )

    def _send_one(self, channel, target, title, body, meta, reminder_id) -> ChannelResult:
        transport = self.transports.get(channel)
        try:
            if transport is None:
                raise LookupError(f"no transport for channel {channel!r}")
            transport.send(target, title, body, channel, meta=meta)
        except TimeoutError as e:
            logger.warning(f"[Dispatcher] Channel {channel} timed out for reminder {reminder_id}: {e}")
            reminders_channel_failed_total.labels(channel=channel).inc()
            return ChannelResult(channel=channel, outcome=OUTCOME_TIMEOUT, error=str(e) or "timeout")
        except Exception as e:
            # One channel failing must not stop delivery on the others
            logger.warning(f"[Dispatcher] Channel {channel} failed for reminder {reminder_id}: {e!r}")
            reminders_channel_failed_total.labels(channel=channel).inc()
            return ChannelResult(channel=channel, outcome=OUTCOME_FAILED, error=str(e) or e.__class__.__name__)
        return ChannelResult(channel=channel, outcome=OUTCOME_SENT)
