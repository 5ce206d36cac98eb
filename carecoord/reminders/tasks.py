from celery import shared_task

from carecoord.db.session import SessionLocal
from .dispatcher import ReminderDispatcher
from .scheduler import ReminderScheduler
from .transports import build_transports
from .config import settings


def build_scheduler(session_factory=SessionLocal) -> ReminderScheduler:
    """Scheduler wired to the application's database and transports"""
    return ReminderScheduler(
        session_factory=session_factory,
        dispatcher=ReminderDispatcher(build_transports(session_factory)),
        interval_seconds=settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
        batch_size=settings.SCHEDULER_BATCH_SIZE,
    )


_scheduler = None


def get_scheduler() -> ReminderScheduler:
    # One scheduler per worker process; its tick lock spans consecutive beats
    global _scheduler
    if _scheduler is None:
        _scheduler = build_scheduler()
    return _scheduler


@shared_task(name="reminders.scan_and_dispatch")
def scan_and_dispatch_task() -> int:
    """Fire every due medication reminder. Returns number dispatched."""
    return get_scheduler().tick()
