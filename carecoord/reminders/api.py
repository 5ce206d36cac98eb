from contextlib import contextmanager
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from carecoord.api.deps import get_db, get_current_actor, get_current_care_actor, get_dispatcher, get_clock
from .schemas import (
    ReminderCreate,
    ReminderUpdate,
    ReminderRead,
    ReminderList,
    ReminderStatusFilter,
    TriggerResult,
    DeliveryAttemptRead,
    ContactPointCreate,
    ContactPointRead,
    NotificationRead,
)
from .exceptions import (
    ReminderError,
    ReminderNotFoundError,
    ReminderPermissionError,
    ReminderValidationError,
    ReminderConflictError,
)
from .repository import upsert_contact_point, list_notifications
from .service import Actor, ReminderService
from .config import settings
from .metrics import reminders_created_total, reminders_triggered_manually_total


router = APIRouter()


def get_service(
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    clock=Depends(get_clock),
) -> ReminderService:
    return ReminderService(db, dispatcher=dispatcher, clock=clock)


@contextmanager
def _http_errors():
    """Translate lifecycle errors into HTTP responses"""
    try:
        yield
    except ReminderNotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")
    except ReminderPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e) or "Forbidden")
    except ReminderConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ReminderValidationError as e:
        raise HTTPException(status_code=400, detail={"field": e.field, "message": e.message})
    except ReminderError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/health")
def health():
    return {
        "status": "ok",
        "scheduler_enabled": settings.SCHEDULER_ENABLED,
        "scan_interval_seconds": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    }


@router.post("/contacts", response_model=ContactPointRead)
def register_contact_point(
    payload: ContactPointCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Register the caller's FCM token, e-mail address or phone number."""
    return upsert_contact_point(db, actor_id=actor.id, channel=payload.channel, address=payload.address)


@router.get("/notifications", response_model=List[NotificationRead])
def list_my_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return list_notifications(db, user_id=actor.id, limit=limit)


@router.post("/", response_model=ReminderRead, status_code=201)
def create_reminder_endpoint(
    payload: ReminderCreate,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_care_actor),
):
    with _http_errors():
        r = service.create_reminder(payload, actor)
    reminders_created_total.inc()
    return r


@router.get("/", response_model=ReminderList)
def list_reminders_endpoint(
    status: ReminderStatusFilter = "all",
    limit: int = Query(50, ge=1),
    mine: bool = False,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    items = service.list_reminders(actor, status=status, limit=limit, mine=mine)
    return ReminderList(count=len(items), items=[ReminderRead.model_validate(i) for i in items])


@router.get("/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(
    reminder_id: str,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    with _http_errors():
        return service.get_reminder(reminder_id, actor)


@router.patch("/{reminder_id}", response_model=ReminderRead)
def update_reminder_endpoint(
    reminder_id: str,
    payload: ReminderUpdate,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_care_actor),
):
    """Update fields; schedule/window/active changes recompute next_run_at."""
    with _http_errors():
        return service.update_reminder(reminder_id, payload, actor)


@router.delete("/{reminder_id}", status_code=204)
def delete_reminder_endpoint(
    reminder_id: str,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_care_actor),
):
    with _http_errors():
        service.delete_reminder(reminder_id, actor)
    return Response(status_code=204)


@router.post("/{reminder_id}/trigger", response_model=TriggerResult)
def trigger_reminder_endpoint(
    reminder_id: str,
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_care_actor),
):
    """Send the reminder now and advance its schedule."""
    with _http_errors():
        next_run_at, result = service.trigger_now(reminder_id, actor)
    reminders_triggered_manually_total.inc()
    return TriggerResult(ok=True, next_run_at=next_run_at, outcome=result.outcome)


@router.get("/{reminder_id}/attempts", response_model=List[DeliveryAttemptRead])
def list_attempts_endpoint(
    reminder_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: ReminderService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    with _http_errors():
        return service.list_attempts(reminder_id, actor, limit=limit)
