"""
Scheduler for periodic SMS outbox draining.
Picks up messages whose post-request delivery failed or never ran.
"""
import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.logger import get_logger
from app.notifications import get_outbox_dispatcher

logger = get_logger(__name__)

OUTBOX_JOB_ID = 'outbox_drain_job'

# Scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


async def async_drain_outbox() -> None:
    """Run the blocking drain off the event loop."""
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, get_outbox_dispatcher().drain)


def start_scheduler() -> AsyncIOScheduler:
    """
    Start the async scheduler for the outbox job.

    Returns:
        The started scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        async_drain_outbox,
        trigger=IntervalTrigger(seconds=settings.outbox_poll_interval),
        id=OUTBOX_JOB_ID,
        name='SMS Outbox Drain',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    _scheduler.start()
    logger.info(f"Scheduler started. Outbox drain interval: {settings.outbox_poll_interval} seconds")

    return _scheduler


def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global _scheduler

    if _scheduler is None:
        logger.warning("No scheduler running")
        return

    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    if _scheduler is None:
        return {
            "running": False,
            "next_run": None,
            "job_count": 0,
            "poll_interval": settings.outbox_poll_interval
        }

    jobs = _scheduler.get_jobs()
    next_run = None
    for job in jobs:
        if job.id == OUTBOX_JOB_ID:
            next_run = job.next_run_time.isoformat() if job.next_run_time else None
            break

    return {
        "running": _scheduler.running,
        "next_run": next_run,
        "job_count": len(jobs),
        "poll_interval": settings.outbox_poll_interval
    }
