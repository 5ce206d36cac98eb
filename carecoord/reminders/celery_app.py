from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue
from .config import settings


celery_app = Celery(
    "reminders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND or None,
)

exchange = Exchange(settings.CELERY_QUEUE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    # Beat fires on UTC minute boundaries, matching the in-process loop
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.CELERY_QUEUE,
    task_default_exchange=settings.CELERY_QUEUE,
    task_default_routing_key=settings.CELERY_QUEUE,
    include=["carecoord.reminders.tasks"],
    task_queues=(
        Queue(settings.CELERY_QUEUE, exchange=exchange, routing_key=settings.CELERY_QUEUE, durable=True),
    ),
)

# Celery Beat schedule for periodic scanning
celery_app.conf.beat_schedule = {
    "scan-and-dispatch": {
        "task": "reminders.scan_and_dispatch",
        "schedule": crontab(minute="*"),
    },
}
