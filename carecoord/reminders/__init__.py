"""Medication reminder module (evaluator, scheduler, dispatcher, API).

The scheduler runs either inside the API process (asyncio task started from
the application lifespan) or as a Celery beat schedule on a worker
deployment. Both paths share ``ReminderScheduler.tick``.
"""
