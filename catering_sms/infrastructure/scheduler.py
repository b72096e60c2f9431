"""
APScheduler setup for the periodic inbox re-check.

Notifications can be missed while the listener reconnects; the re-check job
wakes the dispatcher on a fixed interval to cover those gaps.
"""

import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catering_sms.config.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

RECHECK_JOB_ID = "inbox_recheck"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        scheduler = AsyncIOScheduler(timezone=settings.timezone)

    return scheduler


async def start_scheduler() -> None:
    """Start the scheduler."""
    sched = get_scheduler()
    if not sched.running:
        sched.start()
        logger.info("Scheduler started")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def schedule_recheck(wake: Callable[[], Awaitable[None]], interval_seconds: int) -> None:
    """
    Schedule the periodic wake-up of the dispatcher.

    Args:
        wake: Coroutine function waking the dispatcher, run on the event loop
        interval_seconds: Seconds between re-checks
    """
    sched = get_scheduler()
    sched.add_job(
        wake,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=RECHECK_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled inbox re-check every {interval_seconds}s")
