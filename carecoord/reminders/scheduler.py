"""
Background loop that polls for due medication reminders and fires them.

The loop is an explicit object so tests and the application lifespan can
start, stop and tick it directly. Celery beat drives the same ``tick()``
from a worker deployment (see ``carecoord.reminders.tasks``).
"""
from datetime import datetime
from typing import Callable, Optional
import asyncio
import logging
import threading

from sqlalchemy.orm import Session

from .dispatcher import ReminderDispatcher
from .repository import find_due
from .service import ReminderService
from .metrics import scheduler_scans_total, scheduler_dispatched_total, scheduler_claim_conflicts_total
from carecoord.utils.timezone import to_utc_aware, utc_now

logger = logging.getLogger(__name__)


class ReminderScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: ReminderDispatcher,
        clock: Callable[[], datetime] = utc_now,
        interval_seconds: float = 60,
        batch_size: int = 200,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size

        self._tick_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop on the running event loop"""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"[Scheduler] Started (interval={self.interval_seconds}s, batch_size={self.batch_size})")

    async def stop(self) -> None:
        """Stop the loop; a batch already running is allowed to finish"""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("[Scheduler] Stopped")

    def seconds_until_next_tick(self, now: datetime) -> float:
        """Delay to the next cadence boundary aligned on the UTC epoch"""
        interval = float(self.interval_seconds)
        remainder = to_utc_aware(now).timestamp() % interval
        return (interval - remainder) or interval

    async def _run_loop(self) -> None:
        while not self._stopping.is_set():
            delay = self.seconds_until_next_tick(self.clock())
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await asyncio.to_thread(self.tick)
            except Exception:
                logger.exception("[Scheduler] Tick crashed")

    def tick(self, now: Optional[datetime] = None) -> int:
        """Fire every reminder due at ``now``. Returns the number dispatched.

        A tick that starts while another is still running returns 0 without
        touching the store.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("[Scheduler] Previous batch still running, skipping tick")
            return 0
        try:
            return self._run_batch(to_utc_aware(now) or self.clock())
        finally:
            self._tick_lock.release()

    def _run_batch(self, now: datetime) -> int:
        db = self.session_factory()
        dispatched = 0
        try:
            try:
                due = find_due(db, now, limit=self.batch_size)
            except Exception:
                logger.exception("[Scheduler] Failed to load due reminders, will retry next tick")
                db.rollback()
                return 0
            scheduler_scans_total.inc()
            if not due:
                return 0

            logger.info(f"[Scheduler] {len(due)} reminder(s) due at {now.isoformat()}")
            # Snapshot before any claim: a rollback expires and reloads the rest of the batch
            batch = [(r, r.id, r.version, r.next_run_at) for r in due]
            service = ReminderService(db, dispatcher=self.dispatcher, clock=self.clock)
            for reminder, reminder_id, version, scheduled_at in batch:
                try:
                    result = service.fire(reminder, now, expected_version=version, scheduled_at=scheduled_at)
                except Exception:
                    logger.exception(f"[Scheduler] Failed to fire reminder {reminder_id}")
                    db.rollback()
                    continue
                if result is None:
                    scheduler_claim_conflicts_total.inc()
                elif result.status == "dispatched":
                    dispatched += 1
                    scheduler_dispatched_total.inc()
        finally:
            db.close()
        return dispatched
