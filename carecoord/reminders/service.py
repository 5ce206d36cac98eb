"""
Medication reminder lifecycle: create, update, delete, list, manual trigger,
and the post-dispatch bookkeeping shared with the scheduler loop.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from .models import MedicationReminder, DeliveryAttempt
from .recurrence import ScheduleType, compute_next_run_at
from .repository import (
    create_reminder as repo_create_reminder,
    get_reminder as repo_get_reminder,
    delete_reminder as repo_delete_reminder,
    list_reminders as repo_list_reminders,
    list_attempts as repo_list_attempts,
    save_reminder,
    claim_occurrence,
)
from .dispatcher import ReminderDispatcher, DispatchResult
from .schemas import ReminderCreate, ReminderUpdate
from .exceptions import (
    ReminderNotFoundError,
    ReminderPermissionError,
    ReminderValidationError,
    ReminderConflictError,
)
from carecoord.utils.timezone import to_utc_aware, utc_now

logger = logging.getLogger(__name__)

ELEVATED_ROLES = frozenset({"admin", "caretaker"})
# Roles allowed to create, edit, delete and trigger reminders
CARE_ROLES = frozenset({"nurse", "caretaker", "admin"})

# Fields whose change invalidates the cached next_run_at
SCHEDULING_FIELDS = frozenset({"schedule", "start_date", "end_date", "active"})
NON_NULLABLE_FIELDS = frozenset({"medication_name", "start_date", "schedule", "active"})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the auth layer."""
    id: str
    role: Optional[str] = None

    @property
    def is_elevated(self) -> bool:
        return (self.role or "").lower() in ELEVATED_ROLES

    @property
    def is_care_team(self) -> bool:
        return (self.role or "").lower() in CARE_ROLES


def can_manage(reminder: MedicationReminder, actor: Actor) -> bool:
    return str(reminder.created_by) == str(actor.id) or actor.is_elevated


def schedule_next_run(
    schedule: Dict[str, Any],
    last_triggered_at: Optional[datetime],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    active: bool,
    now: datetime,
) -> Optional[datetime]:
    """next_run_at for a reminder in the given state; inactive reminders have none."""
    if not active:
        return None
    return compute_next_run_at(schedule, last_triggered_at, start_date, end_date, now)


def next_state(reminder: MedicationReminder, now: datetime) -> Dict[str, Any]:
    """State after a dispatch at ``now``: the same transition for loop ticks and manual triggers.

    Depends only on the reminder's schedule fields and ``now``, so applying it
    twice with the same ``now`` converges on the same values.
    """
    if reminder.schedule_type == ScheduleType.ONE_TIME.value:
        # One-time reminders never re-arm, even when delivery failed
        return {"last_triggered_at": now, "next_run_at": None, "active": False}

    next_run_at = schedule_next_run(
        reminder.schedule, now, reminder.start_date, reminder.end_date, bool(reminder.active), now
    )
    return {
        "last_triggered_at": now,
        "next_run_at": next_run_at,
        "active": bool(reminder.active) and next_run_at is not None,
    }


class ReminderService:
    """Lifecycle operations on medication reminders"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[ReminderDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock

    # --- reads ---

    def get_reminder(self, reminder_id: str, actor: Optional[Actor] = None) -> MedicationReminder:
        reminder = repo_get_reminder(self.db, reminder_id)
        if not reminder:
            raise ReminderNotFoundError(reminder_id)
        if actor is not None and not can_manage(reminder, actor):
            raise ReminderPermissionError("Forbidden: not the creator")
        return reminder

    def list_reminders(
        self,
        actor: Actor,
        status: str = "all",
        limit: int = 50,
        mine: bool = False,
    ) -> List[MedicationReminder]:
        # Only elevated roles can see reminders created by others
        created_by = actor.id if (mine or not actor.is_elevated) else None
        return repo_list_reminders(self.db, created_by=created_by, status=status, now=self.clock(), limit=limit)

    def list_attempts(self, reminder_id: str, actor: Actor, limit: int = 50) -> List[DeliveryAttempt]:
        self.get_reminder(reminder_id, actor)
        return repo_list_attempts(self.db, reminder_id, limit=limit)

    # --- writes ---

    def create_reminder(self, data: ReminderCreate, actor: Actor) -> MedicationReminder:
        now = self.clock()
        start_date = to_utc_aware(data.start_date) or now
        end_date = to_utc_aware(data.end_date)
        _check_window(start_date, end_date)

        reminder = MedicationReminder(
            patient_id=data.patient_id,
            entry_report_id=data.entry_report_id,
            created_by=actor.id,
            medication_name=data.medication_name,
            dosage=data.dosage,
            instructions=data.instructions,
            start_date=start_date,
            end_date=end_date,
            schedule=data.schedule,
            notify_channels=list(data.notify_channels),
            active=True,
            last_triggered_at=None,
            next_run_at=schedule_next_run(data.schedule, None, start_date, end_date, True, now),
            version=1,
        )
        reminder = repo_create_reminder(self.db, reminder)
        logger.info(
            f"[Reminders] Created {reminder.id} type={reminder.schedule_type} "
            f"next_run_at={reminder.next_run_at}"
        )
        return reminder

    def update_reminder(self, reminder_id: str, data: ReminderUpdate, actor: Actor) -> MedicationReminder:
        reminder = self.get_reminder(reminder_id, actor)
        values = data.model_dump(exclude_unset=True)

        for name in NON_NULLABLE_FIELDS:
            if name in values and values[name] is None:
                raise ReminderValidationError(name, "cannot be null")
        if "notify_channels" in values and not values["notify_channels"]:
            values["notify_channels"] = ["in_app"]
        for name in ("start_date", "end_date"):
            if name in values:
                values[name] = to_utc_aware(values[name])

        # Only keep real changes so an idempotent PATCH leaves next_run_at alone
        values = {k: v for k, v in values.items() if getattr(reminder, k) != v}
        if not values:
            return reminder

        merged = {name: values.get(name, getattr(reminder, name)) for name in SCHEDULING_FIELDS}
        _check_window(merged["start_date"], merged["end_date"])
        if SCHEDULING_FIELDS & values.keys():
            # Edits recompute forward from now, not from last_triggered_at
            values["next_run_at"] = schedule_next_run(
                merged["schedule"],
                None,
                merged["start_date"],
                merged["end_date"],
                merged["active"],
                self.clock(),
            )

        if not save_reminder(self.db, reminder, reminder.version, values):
            raise ReminderConflictError(reminder_id)
        logger.info(f"[Reminders] Updated {reminder_id} fields={sorted(values)} next_run_at={reminder.next_run_at}")
        return reminder

    def delete_reminder(self, reminder_id: str, actor: Actor) -> None:
        reminder = self.get_reminder(reminder_id, actor)
        repo_delete_reminder(self.db, reminder)
        logger.info(f"[Reminders] Deleted {reminder_id}")

    # --- dispatch ---

    def trigger_now(self, reminder_id: str, actor: Actor) -> Tuple[Optional[datetime], DispatchResult]:
        """Manual "send now": same claim-then-dispatch path as the scheduler."""
        reminder = self.get_reminder(reminder_id, actor)
        result = self.fire(reminder)
        if result is None:
            raise ReminderConflictError(reminder_id)
        return reminder.next_run_at, result

    def fire(
        self,
        reminder: MedicationReminder,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> Optional[DispatchResult]:
        """Advance the reminder past its current occurrence, then dispatch it.

        The state transition is written with a version and occurrence check
        before any notification goes out, so of two concurrent callers only one
        dispatches. Returns None for the caller that lost the claim.

        Callers holding a snapshot taken at load time (the scheduler batch)
        pass ``expected_version`` and ``scheduled_at``; a rollback earlier in
        the same session reloads ``reminder`` and must not move the claim to a
        later occurrence.
        """
        if self.dispatcher is None:
            raise RuntimeError("ReminderService.fire requires a dispatcher")
        now = to_utc_aware(now) or self.clock()
        if expected_version is None:
            expected_version = reminder.version
            scheduled_at = reminder.next_run_at
        due_at = to_utc_aware(scheduled_at) or now

        state = next_state(reminder, now)
        if not claim_occurrence(self.db, reminder, expected_version, scheduled_at, **state):
            logger.info(f"[Reminders] Reminder {reminder.id} already claimed (version {expected_version}), skipping")
            return None

        return self.dispatcher.dispatch(self.db, reminder, due_at)


def _check_window(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ReminderValidationError("end_date", "must not be before start_date")
