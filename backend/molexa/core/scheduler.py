"""
Analytics archival scheduler.
Uses APScheduler to roll closed months into archive files.
"""
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from molexa.services.analytics import AnalyticsService

logger = logging.getLogger("molexa.scheduler")


class ArchiveScheduler:
    """One scheduler per application, bound to the running event loop."""

    def __init__(self, service: "AnalyticsService") -> None:
        self.service = service
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    async def job_monthly_archive(self) -> None:
        """Archive the month that just closed."""
        logger.info("=== SCHEDULED JOB: monthly archival started ===")
        try:
            results = await self.service.archive_previous_period_if_rolled()
            logger.info("Monthly archival complete: %d period(s) archived", len(results))
        except Exception as e:
            logger.error(f"Monthly archival job failed: {e}", exc_info=True)

    def start(self) -> None:
        """
        Register and start the archival job.
        Called once at application startup.
        """
        if self.scheduler.running:
            logger.warning("Scheduler already running, skipping start")
            return

        # 1st of each month at 00:05 UTC, shortly after the rollover
        self.scheduler.add_job(
            self.job_monthly_archive,
            CronTrigger(day=1, hour=0, minute=5, timezone="UTC"),
            id="analytics_monthly_archive",
            name="Monthly analytics archival",
            replace_existing=True,
        )

        self.scheduler.start()

        jobs = self.scheduler.get_jobs()
        logger.info(f"Scheduler started with {len(jobs)} jobs:")
        for job in jobs:
            logger.info(f"  - {job.name} (next run: {job.next_run_time})")

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def get_status(self) -> dict:
        """Return current scheduler status and next run times."""
        jobs = self.scheduler.get_jobs() if self.scheduler.running else []
        return {
            "running": self.scheduler.running,
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": str(job.next_run_time) if job.next_run_time else None,
                }
                for job in jobs
            ],
        }
