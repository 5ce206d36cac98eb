"""
Medication reminder models - reminders, delivery attempts, in-app notifications
and per-actor contact points used by the notification transports.
"""
from datetime import datetime, timezone as dt_timezone
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Index, JSON, Text
from sqlalchemy.types import TypeDecorator

from carecoord.db.base import Base
from carecoord.utils.timezone import to_utc_aware


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC-aware values.

    SQLite drops tzinfo on the way out; PostgreSQL returns the session zone.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return to_utc_aware(value)

    def process_result_value(self, value, dialect):
        return to_utc_aware(value)


class MedicationReminder(Base):
    """Schedulable medication reminder (one-time or recurring)"""
    __tablename__ = "medication_reminders"

    id = Column(String(32), primary_key=True, default=_new_id)
    patient_id = Column(String, nullable=True, index=True)
    entry_report_id = Column(String, nullable=True, index=True)
    created_by = Column(String, nullable=True, index=True)

    medication_name = Column(String, nullable=False)
    dosage = Column(String, nullable=True)
    instructions = Column(Text, nullable=True)

    start_date = Column(UTCDateTime(), nullable=False, default=_utcnow)
    end_date = Column(UTCDateTime(), nullable=True)

    schedule = Column(JSON, nullable=False)  # {"type": "one_time" | "recurring", ...}
    notify_channels = Column(JSON, nullable=False, default=lambda: ["in_app"])

    active = Column(Boolean, nullable=False, default=True)
    last_triggered_at = Column(UTCDateTime(), nullable=True)
    next_run_at = Column(UTCDateTime(), nullable=True)

    # Optimistic concurrency token, bumped on every persisted change
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_medication_reminders_active_next_run", "active", "next_run_at"),
    )

    @property
    def schedule_type(self) -> str:
        return (self.schedule or {}).get("type", "")


class DeliveryAttempt(Base):
    """Immutable audit record of one dispatch"""
    __tablename__ = "delivery_attempts"

    id = Column(String(32), primary_key=True, default=_new_id)
    reminder_id = Column(String(32), nullable=False, index=True)
    due_at = Column(UTCDateTime(), nullable=False)
    channels = Column(JSON, nullable=False, default=list)
    outcome = Column(String, nullable=False)  # sent | failed | timeout
    error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), default=_utcnow, nullable=False)


class Notification(Base):
    """In-app notification row written by the in_app channel"""
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    meta = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), default=_utcnow, nullable=False)


class ContactPoint(Base):
    """Delivery address of an actor for one channel (FCM token, e-mail, phone)"""
    __tablename__ = "contact_points"

    id = Column(String(32), primary_key=True, default=_new_id)
    actor_id = Column(String, nullable=False, index=True)
    channel = Column(String, nullable=False)  # push, email, sms
    address = Column(String, nullable=False)
    created_at = Column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_contact_points_actor_channel", "actor_id", "channel"),
    )
