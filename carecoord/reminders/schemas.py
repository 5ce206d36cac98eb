"""
Request/response schemas for medication reminders
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .recurrence import ScheduleError, parse_schedule


Channel = Literal["in_app", "email", "sms", "push"]
ContactChannel = Literal["email", "sms", "push"]
ReminderStatusFilter = Literal["all", "pending", "sent"]
AttemptOutcome = Literal["sent", "failed", "timeout"]


def _validate_schedule(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    try:
        # Store the canonical form, defaults applied
        return parse_schedule(value).to_dict()
    except ScheduleError as e:
        raise ValueError(f"schedule.{e.field}: {e.message}")


def _validate_channels(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    if not value:
        return ["in_app"]
    # Keep first-seen order, drop duplicates
    return list(dict.fromkeys(value))


class ReminderCreate(BaseModel):
    """Schema for creating a medication reminder"""
    medication_name: str = Field(..., min_length=1)
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    patient_id: Optional[str] = None
    entry_report_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    schedule: Dict[str, Any]
    notify_channels: List[Channel] = Field(default_factory=lambda: ["in_app"])

    @field_validator("schedule")
    @classmethod
    def check_schedule(cls, v):
        return _validate_schedule(v)

    @field_validator("notify_channels")
    @classmethod
    def check_channels(cls, v):
        return _validate_channels(v)


class ReminderUpdate(BaseModel):
    """Schema for updating reminders; only fields that are sent are applied"""
    medication_name: Optional[str] = Field(default=None, min_length=1)
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    schedule: Optional[Dict[str, Any]] = None
    notify_channels: Optional[List[Channel]] = None
    active: Optional[bool] = None

    @field_validator("schedule")
    @classmethod
    def check_schedule(cls, v):
        return _validate_schedule(v)

    @field_validator("notify_channels")
    @classmethod
    def check_channels(cls, v):
        return _validate_channels(v)


class ReminderRead(BaseModel):
    """Schema for reading a medication reminder"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    medication_name: str
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    patient_id: Optional[str] = None
    entry_report_id: Optional[str] = None
    created_by: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    schedule: Dict[str, Any]
    notify_channels: List[str]
    active: bool
    last_triggered_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class ReminderList(BaseModel):
    count: int
    items: List[ReminderRead]


class TriggerResult(BaseModel):
    """Returned by the manual "send now" endpoint"""
    ok: bool = True
    next_run_at: Optional[datetime] = None
    outcome: Optional[str] = None


class DeliveryAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reminder_id: str
    due_at: datetime
    channels: List[str]
    outcome: AttemptOutcome
    error: Optional[str] = None
    created_at: datetime


class ContactPointCreate(BaseModel):
    """Register where an actor receives push/email/sms deliveries"""
    channel: ContactChannel
    address: str = Field(..., min_length=1)


class ContactPointRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str
    channel: str
    address: str
    created_at: datetime
    updated_at: datetime


class NotificationRead(BaseModel):
    """In-app inbox entry"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    message: str
    meta: Dict[str, Any]
    read: bool
    created_at: datetime
