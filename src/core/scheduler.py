"""Scheduler for the daily rollover job."""

import logging
from datetime import date, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core import date_provider, db_client
from src.core.config import constants, settings
from src.core.db_client import RecordNotFoundError
from src.core.logging import span
from src.core.scheduler_tracker import job_tracker, retry_job_with_backoff
from src.models.service_models import RolloverReport
from src.modules.tasks import overdue


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def get_last_rollover_date() -> date | None:
    """Date of the most recent processed rollover, or None if none has run yet."""
    try:
        record = await db_client.get_record(
            collection=constants.APP_STATE_COLLECTION,
            record_id=constants.LAST_ROLLOVER_KEY,
        )
    except RecordNotFoundError:
        return None
    return date.fromisoformat(record["value"]) if record.get("value") else None


async def set_last_rollover_date(day: date) -> None:
    """Remember ``day`` as processed."""
    try:
        await db_client.update_record(
            collection=constants.APP_STATE_COLLECTION,
            record_id=constants.LAST_ROLLOVER_KEY,
            data={"value": day.isoformat()},
        )
    except RecordNotFoundError:
        await db_client.create_record(
            collection=constants.APP_STATE_COLLECTION,
            data={"id": constants.LAST_ROLLOVER_KEY, "value": day.isoformat()},
        )


async def run_daily_rollover(*, today: date | None = None) -> list[RolloverReport]:
    """Run the overdue processor once for every date since the last rollover.

    A date is marked processed in the same transaction as its rollover, so a
    failure leaves it to be retried and a second run on the same day is a no-op.

    Args:
        today: Date to roll over to (defaults to the DateProvider's today)

    Returns:
        One report per processed date, oldest first
    """
    with span("scheduler.run_daily_rollover"):
        current = today or date_provider.today()
        last = await get_last_rollover_date()

        if last is not None and last >= current:
            logger.info(
                "Rollover already processed",
                extra={"last_rollover": last.isoformat(), "today": current.isoformat()},
            )
            return []

        if last is None:
            pending = [current]
        else:
            pending = [last + timedelta(days=i) for i in range(1, (current - last).days + 1)]

        reports = []
        for day in pending:
            async with db_client.transaction():
                reports.append(await overdue.process_overdue(current_date=day))
                await set_last_rollover_date(day)

        logger.info(
            "Daily rollover complete",
            extra={"dates": [d.isoformat() for d in pending], "today": current.isoformat()},
        )
        return reports


async def advance_debug_date(*, days: int = 1) -> list[RolloverReport]:
    """Move the debug date forward and process overdue tasks for the new day.

    Args:
        days: Number of days to advance

    Returns:
        Reports for every date the rollover processed
    """
    with span("scheduler.advance_debug_date"):
        new_today = date_provider.advance(days)
        return await run_daily_rollover(today=new_today)


async def rollover_job() -> None:
    """Scheduled entry point with retry and job tracking."""
    await retry_job_with_backoff(run_daily_rollover, constants.ROLLOVER_JOB_ID)


def start_scheduler() -> None:
    """Start the scheduler and register the rollover job."""
    if not settings.enable_rollover_scheduler:
        logger.info("Rollover scheduler disabled")
        return

    logger.info("Starting scheduler")

    scheduler.add_job(
        rollover_job,
        trigger=CronTrigger(
            hour=settings.rollover_hour,
            minute=settings.rollover_minute,
            timezone=settings.timezone,
        ),
        id=constants.ROLLOVER_JOB_ID,
        name="Daily Task Rollover",
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=constants.ROLLOVER_MISFIRE_GRACE_SECONDS,
    )
    logger.info(
        "Scheduled daily rollover job: daily at %02d:%02d %s",
        settings.rollover_hour,
        settings.rollover_minute,
        settings.timezone,
    )

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler if it is running."""
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


async def get_scheduler_health() -> dict[str, Any]:
    """Rollover job status, dead-lettered failures and the last processed date."""
    last = await get_last_rollover_date()
    return {
        "scheduler_running": scheduler.running,
        "last_rollover_date": last.isoformat() if last else None,
        "rollover_job": await job_tracker.get_job_status(constants.ROLLOVER_JOB_ID),
        "dead_letter_queue": job_tracker.get_dead_letter_queue(),
    }
