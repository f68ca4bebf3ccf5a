import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from catalog_sync.service import SyncService
from core.config import settings

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, service: SyncService, interval_minutes: Optional[int] = None):
        self.service = service
        self.interval_minutes = interval_minutes or settings.SYNC_SCHEDULE_MINUTES
        self.scheduler = AsyncIOScheduler()

    async def run_sync_job(self):
        """Job to run one scheduled catalog sync"""
        logger.info("Scheduler: Starting catalog sync job")
        try:
            run = await self.service.scheduled_sync()
            if run is not None:
                logger.info(f"Scheduler: Sync run {run.run_id} finished with status {run.status.value}")
        except Exception as e:
            logger.error(f"Scheduler: Catalog sync job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="catalog_sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Catalog sync scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Catalog sync scheduler stopped")
