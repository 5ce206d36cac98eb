from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy.orm import Session
from sqlalchemy import select, update

from .models import MedicationReminder, DeliveryAttempt, Notification, ContactPoint
from carecoord.utils.timezone import to_utc_aware, utc_now


MAX_LIST_LIMIT = 200


def create_reminder(db: Session, reminder: MedicationReminder) -> MedicationReminder:
    db.add(reminder)
    db.commit()
    db.refresh(reminder)
    return reminder


def get_reminder(db: Session, reminder_id: str) -> Optional[MedicationReminder]:
    return db.get(MedicationReminder, reminder_id)


def delete_reminder(db: Session, reminder: MedicationReminder) -> None:
    db.delete(reminder)
    db.commit()


def list_reminders(
    db: Session,
    created_by: Optional[str] = None,
    status: str = "all",
    now: Optional[datetime] = None,
    limit: int = 50,
) -> List[MedicationReminder]:
    """List reminders, optionally only one actor's, filtered by status.

    status: "pending" = active with a future next run, "sent" = fired at least once.
    """
    now = to_utc_aware(now) or utc_now()
    limit = max(1, min(int(limit or 50), MAX_LIST_LIMIT))
    stmt = select(MedicationReminder)
    if created_by:
        stmt = stmt.where(MedicationReminder.created_by == created_by)
    if status == "pending":
        stmt = stmt.where(MedicationReminder.active.is_(True)).where(MedicationReminder.next_run_at > now)
    elif status == "sent":
        stmt = stmt.where(MedicationReminder.last_triggered_at.isnot(None))
    stmt = stmt.order_by(
        MedicationReminder.next_run_at.asc(), MedicationReminder.updated_at.desc()
    ).limit(limit)
    return list(db.execute(stmt).scalars())


def find_due(db: Session, now: datetime, limit: int = 200) -> List[MedicationReminder]:
    """Active reminders whose next run is set and not after now, oldest first."""
    stmt = (
        select(MedicationReminder)
        .where(MedicationReminder.active.is_(True))
        .where(MedicationReminder.next_run_at.isnot(None))
        .where(MedicationReminder.next_run_at <= to_utc_aware(now))
        .order_by(MedicationReminder.next_run_at.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def save_reminder(
    db: Session,
    reminder: MedicationReminder,
    expected_version: int,
    values: Dict[str, Any],
    conditions: Sequence[Any] = (),
) -> bool:
    """Write ``values`` only if the row still has ``expected_version``.

    ``conditions`` are extra WHERE clauses the row must also satisfy. Bumps the
    version and refreshes ``reminder`` on success. Returns False when another
    writer got there first; nothing is written in that case.
    """
    stmt = (
        update(MedicationReminder)
        .where(MedicationReminder.id == reminder.id)
        .where(MedicationReminder.version == expected_version)
    )
    for condition in conditions:
        stmt = stmt.where(condition)
    result = db.execute(
        stmt.values(**values, version=MedicationReminder.version + 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return False
    db.commit()
    db.refresh(reminder)
    return True


def claim_occurrence(
    db: Session,
    reminder: MedicationReminder,
    expected_version: int,
    scheduled_at: Optional[datetime],
    last_triggered_at: datetime,
    next_run_at: Optional[datetime],
    active: bool,
) -> bool:
    """Atomically advance a reminder past the occurrence about to be dispatched.

    The row must still be at ``expected_version`` and still point at
    ``scheduled_at`` (the ``next_run_at`` the caller loaded), so an occurrence
    already advanced by another caller is never claimed a second time.
    """
    if scheduled_at is None:
        occurrence = MedicationReminder.next_run_at.is_(None)
    else:
        occurrence = MedicationReminder.next_run_at == to_utc_aware(scheduled_at)
    return save_reminder(
        db,
        reminder,
        expected_version,
        {
            "last_triggered_at": last_triggered_at,
            "next_run_at": next_run_at,
            "active": active,
        },
        conditions=(occurrence,),
    )


def record_attempt(
    db: Session,
    reminder_id: str,
    due_at: datetime,
    channels: List[str],
    outcome: str,
    error: Optional[str] = None,
) -> DeliveryAttempt:
    attempt = DeliveryAttempt(
        reminder_id=reminder_id,
        due_at=due_at,
        channels=list(channels),
        outcome=outcome,
        error=error,
    )
    db.add(attempt)
    db.commit()
    db.refresh(attempt)
    return attempt


def list_attempts(db: Session, reminder_id: str, limit: int = 50) -> List[DeliveryAttempt]:
    stmt = (
        select(DeliveryAttempt)
        .where(DeliveryAttempt.reminder_id == reminder_id)
        .order_by(DeliveryAttempt.created_at.desc())
        .limit(max(1, min(limit, MAX_LIST_LIMIT)))
    )
    return list(db.execute(stmt).scalars())


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    meta: Optional[Dict[str, Any]] = None,
) -> Notification:
    notification = Notification(user_id=user_id, title=title, message=message, meta=meta or {})
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def list_notifications(db: Session, user_id: str, limit: int = 50) -> List[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def upsert_contact_point(db: Session, actor_id: str, channel: str, address: str) -> ContactPoint:
    existing = (
        db.query(ContactPoint)
        .filter(ContactPoint.actor_id == actor_id, ContactPoint.channel == channel)
        .order_by(ContactPoint.created_at.desc())
        .first()
    )
    if existing:
        existing.address = address
        db.add(existing)
        db.commit()
        db.refresh(existing)
        return existing
    contact = ContactPoint(actor_id=actor_id, channel=channel, address=address)
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


def get_contact_address(db: Session, actor_id: str, channel: str) -> Optional[str]:
    c = (
        db.query(ContactPoint)
        .filter(ContactPoint.actor_id == actor_id, ContactPoint.channel == channel)
        .order_by(ContactPoint.created_at.desc())
        .first()
    )
    return c.address if c else None
