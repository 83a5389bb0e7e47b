"""
Report Scheduler - Runs due scheduled reports on an interval.

Uses APScheduler's asyncio scheduler so jobs share the application's event
loop and database engine. Started from the application lifespan when
REPORT_SCHEDULER_ENABLED is set.
"""

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from openstream.config import settings
from openstream.db.session import get_write_session
from openstream.observability.logging import get_logger
from openstream.services.access_codes import AccessCodeService
from openstream.services.reports import ReportService

logger = get_logger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")

REPORTS_JOB_ID = "scheduled_reports"
CLEANUP_JOB_ID = "expired_code_cleanup"


async def job_run_scheduled_reports() -> int:
    """Generate every due scheduled report."""
    async with get_write_session() as session:
        try:
            generated = await ReportService(session).run_due()
        except SQLAlchemyError as e:
            logger.error("scheduled_reports_job_failed", error=str(e), exc_info=True)
            return 0

    if generated:
        logger.info("scheduled_reports_job_complete", generated=generated)
    return generated


async def job_cleanup_expired_codes() -> int:
    """Expire access codes whose lifetime has passed."""
    async with get_write_session() as session:
        try:
            return await AccessCodeService(session).cleanup_expired()
        except SQLAlchemyError as e:
            logger.error("expired_code_cleanup_job_failed", error=str(e), exc_info=True)
            return 0


def start_scheduler() -> None:
    """
    Register and start the background jobs.

    Called once at application startup.
    """
    if scheduler.running:
        logger.warning("report_scheduler_already_running")
        return

    scheduler.add_job(
        job_run_scheduled_reports,
        IntervalTrigger(seconds=settings.report_scheduler_interval_seconds),
        id=REPORTS_JOB_ID,
        name="Generate due scheduled reports",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        job_cleanup_expired_codes,
        IntervalTrigger(seconds=settings.cleanup_interval_seconds),
        id=CLEANUP_JOB_ID,
        name="Expire lapsed access codes",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()

    for job in scheduler.get_jobs():
        logger.info("scheduler_job_registered", job_id=job.id, name=job.name)


def stop_scheduler() -> None:
    """Shut down the scheduler without waiting for running jobs."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("report_scheduler_stopped")


def get_scheduler_status() -> dict[str, Any]:
    """Scheduler state and next run times."""
    jobs = scheduler.get_jobs() if scheduler.running else []
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "nextRun": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in jobs
        ],
    }
