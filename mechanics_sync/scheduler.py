"""
Scheduler: APScheduler-based daily mechanics refresh.

The job loads the catalog and hands its ids to the orchestrator; while the
cache is fresh the run is a no-op, so misfires and restarts are harmless.
"""
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from mechanics_sync.catalog import catalog_ids, load_catalog
from mechanics_sync.clients import BGGClient
from mechanics_sync.config import get_settings
from mechanics_sync.exceptions import MechanicsSyncError
from mechanics_sync.ingestion import EnrichmentOrchestrator
from mechanics_sync.utils import LogContext

logger = structlog.get_logger()


class RefreshScheduler:
    """
    Manages the scheduled refresh job.

    Schedule:
    - Mechanics refresh: daily at ``refresh_schedule_hour``:00 UTC
    """

    def __init__(
        self,
        orchestrator: EnrichmentOrchestrator,
        client: Optional[BGGClient] = None,
    ):
        self.settings = get_settings()
        self.orchestrator = orchestrator
        self.client = client
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 3600,
            },
        )

    def _setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.run_refresh_job,
            trigger=CronTrigger(hour=self.settings.refresh_schedule_hour, minute=0),
            id="mechanics_refresh",
            name="Daily mechanics refresh",
            replace_existing=True,
        )
        logger.info(
            "Scheduled mechanics refresh job",
            schedule=f"daily at {self.settings.refresh_schedule_hour}:00 UTC",
        )

    async def run_refresh_job(self) -> None:
        """Load the catalog and refresh; failures are logged, not raised."""
        with LogContext(job="mechanics_refresh"):
            try:
                items = await load_catalog(self.client)
            except (OSError, ValueError, MechanicsSyncError) as e:
                logger.error("Could not load catalog for refresh", error=str(e))
                return

            try:
                result = await self.orchestrator.refresh(catalog_ids(items))
            except MechanicsSyncError as e:
                logger.error("Scheduled mechanics refresh failed", error=str(e))
                return

            logger.info(
                "Scheduled mechanics refresh finished",
                skipped=result.skipped,
                updated=result.updated,
                failed=result.failed,
                total=result.total,
            )

    def start(self) -> None:
        self._setup_jobs()
        self.scheduler.start()
        logger.info("Refresh scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Refresh scheduler stopped")
