import asyncio
import logging
from datetime import datetime, timedelta

from slotwatch.config import CFG
from slotwatch.notifications import send_system_status

logger = logging.getLogger(__name__)

# A global event to signal the background task to stop cleanly on shutdown.
_stop_event = asyncio.Event()

_task: asyncio.Task | None = None


class JobClock:
    """Son çalışma zamanlarını tutar; hangi işin vadesinin geldiğine karar verir."""

    def __init__(self):
        self.last_batch: datetime | None = None
        self.last_retry: datetime | None = None
        self.last_cleanup_day = None
        self.last_daily_summary_day = None
        self.last_weekly_summary_day = None

    def batch_due(self, now: datetime) -> bool:
        return self.last_batch is None or now - self.last_batch >= timedelta(minutes=CFG["batch_every_minutes"])

    def retry_due(self, now: datetime) -> bool:
        return self.last_retry is None or now - self.last_retry >= timedelta(minutes=CFG["notify_retry_every_minutes"])

    def cleanup_due(self, now: datetime) -> bool:
        return self.last_cleanup_day != now.date()

    def daily_summary_due(self, now: datetime) -> bool:
        return now.hour >= CFG["summary_hour"] and self.last_daily_summary_day != now.date()

    def weekly_summary_due(self, now: datetime) -> bool:
        # Pazartesi
        return (
            now.weekday() == 0
            and now.hour >= CFG["summary_hour"]
            and self.last_weekly_summary_day != now.date()
        )


async def run_due_jobs(engine, clock: JobClock, now: datetime):
    """Runs every job whose time has come. Each job failure is logged on its own."""
    if clock.batch_due(now):
        clock.last_batch = now
        try:
            summary = await engine.run_batch(now)
            if summary["total_sites"]:
                await send_system_status(summary)
        except Exception:
            logger.exception("[SCHEDULER] Batch failed")

    if clock.retry_due(now):
        clock.last_retry = now
        try:
            await engine.retry_pending_notifications(now)
        except Exception:
            logger.exception("[SCHEDULER] Notification retry sweep failed")

    if clock.cleanup_due(now):
        clock.last_cleanup_day = now.date()
        try:
            engine.cleanup_old_appointments(now)
        except Exception:
            logger.exception("[SCHEDULER] Retention sweep failed")

    if clock.daily_summary_due(now):
        clock.last_daily_summary_day = now.date()
        try:
            await engine.send_summaries("daily")
        except Exception:
            logger.exception("[SCHEDULER] Daily summaries failed")

    if clock.weekly_summary_due(now):
        clock.last_weekly_summary_day = now.date()
        try:
            await engine.send_summaries("weekly")
        except Exception:
            logger.exception("[SCHEDULER] Weekly summaries failed")


async def monitor_loop(engine):
    """Background task that wakes up every minute to run whatever is due."""
    logger.info("[SCHEDULER] Background scheduler started")
    clock = JobClock()

    while not _stop_event.is_set():
        try:
            await run_due_jobs(engine, clock, datetime.now())
        except Exception:
            logger.exception("[SCHEDULER] Loop error")

        # Sleep for 60 seconds, waking up early if _stop_event is set
        try:
            await asyncio.wait_for(_stop_event.wait(), timeout=60.0)
        except asyncio.TimeoutError:
            pass

    logger.info("[SCHEDULER] Background scheduler stopped")


def start_scheduler(engine):
    """Starts the scheduler as a background asyncio task."""
    global _task
    _stop_event.clear()
    _task = asyncio.create_task(monitor_loop(engine))
    return _task


def stop_scheduler():
    """Signals the scheduler to stop."""
    _stop_event.set()
