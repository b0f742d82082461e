"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for the reminder dispatch job.

WHY: Due reminders must go out without anyone calling the API. The
interval job runs the dispatch worker in-process; the cron endpoint can
trigger the same worker from outside. Overlapping runs are safe because
every reminder is claimed before delivery.

HOW: Uses APScheduler with AsyncIOScheduler and an in-memory job store.
coalesce and max_instances=1 keep a slow run from piling up behind itself.

Example:
    # In main.py startup:
    from invoicetrust.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown():
        await shutdown_scheduler()
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.interval import IntervalTrigger

from invoicetrust.core.config import settings
from invoicetrust.schemas.reminder import DispatchSummary
from invoicetrust.services.reminder_dispatch import ReminderDispatchWorker


logger = logging.getLogger(__name__)


REMINDER_DISPATCH_JOB_ID = "reminder_dispatch"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    HOW:
    1. Creates AsyncIOScheduler with memory job store
    2. Registers the reminder dispatch job
    3. Starts the scheduler

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    jobstores = {
        "default": MemoryJobStore()
    }

    executors = {
        "default": AsyncIOExecutor()
    }

    job_defaults = {
        "coalesce": True,  # Combine multiple missed runs into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 60,  # Allow 60s late execution
    }

    _scheduler = AsyncIOScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    _register_reminder_dispatch_job()

    _scheduler.start()
    logger.info(
        f"Scheduler started with reminder dispatch every "
        f"{settings.REMINDER_DISPATCH_INTERVAL_SECONDS} seconds"
    )


async def _dispatch_job() -> None:
    """
    Interval job body.

    WHY: An exception escaping an APScheduler job is only logged by the
    scheduler itself, without our context, so it is caught and logged here.
    """
    try:
        await ReminderDispatchWorker().run()
    except Exception as e:
        logger.error(f"Error in reminder dispatch job: {e}", exc_info=True)


def _register_reminder_dispatch_job() -> None:
    """Schedule the dispatch worker on a fixed interval."""
    global _scheduler

    if _scheduler is None:
        logger.error("Cannot register job: scheduler not initialized")
        return

    _scheduler.add_job(
        func=_dispatch_job,
        trigger=IntervalTrigger(seconds=settings.REMINDER_DISPATCH_INTERVAL_SECONDS),
        id=REMINDER_DISPATCH_JOB_ID,
        name="Payment Reminder Dispatch",
        replace_existing=True,
    )

    logger.info(
        f"Registered reminder dispatch job "
        f"(interval: {settings.REMINDER_DISPATCH_INTERVAL_SECONDS}s)"
    )


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from FastAPI shutdown event.
    """
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler not running")
        return

    if not _scheduler.running:
        logger.info("Scheduler already stopped")
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


async def run_reminder_dispatch_now() -> DispatchSummary:
    """
    Run the dispatch worker immediately, outside the schedule.

    Used by the cron endpoint.

    Returns:
        DispatchSummary of the run
    """
    return await ReminderDispatchWorker().run()


def get_scheduler_status() -> dict:
    """
    Get scheduler status information.

    Returns:
        Dict with scheduler status and job details
    """
    global _scheduler

    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        })

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
