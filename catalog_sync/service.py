"""
Sync control surface shared by the HTTP API, the scheduler and the CLI
"""

from typing import List, Optional, Set, Union
from sqlalchemy.ext.asyncio import async_sessionmaker
import asyncio
import logging
import uuid

from catalog_sync.extractors.queries import ExtractionFilter
from catalog_sync.orchestrator import SyncOrchestrator
from catalog_sync.run_tracker import SyncRunTracker, effective_status
from core.database import async_session_maker
from core.exceptions import SyncAlreadyRunningError
from models.base import SyncTrigger
from models.sync_run import SyncRun
from schemas.api import SyncRunInfo, SyncStatusResponse

logger = logging.getLogger(__name__)


def run_info(run: SyncRun) -> SyncRunInfo:
    """Observer view of a run, with orphaned runs shown as timeout"""
    return SyncRunInfo(
        id=str(run.run_id),
        trigger=run.trigger,
        status=effective_status(run),
        started_at=run.started_at,
        completed_at=run.completed_at,
        current_step=run.current_step,
        progress_percent=run.progress_percent,
        records_processed=run.records_processed,
        records_fetched=run.records_fetched,
        records_written=run.records_written,
        records_skipped=run.records_skipped,
        records_failed=run.records_failed,
        error_message=run.error_message,
        hook_errors=run.hook_errors,
        stats=run.stats,
        cancel_requested=run.cancel_requested,
    )


class SyncService:
    """
    Start, observe and cancel sync runs.

    Runs started with wait=False execute as background tasks of the
    current event loop; the caller gets the started run immediately.
    """

    def __init__(
        self,
        orchestrator: Optional[SyncOrchestrator] = None,
        session_factory: Optional[async_sessionmaker] = None
    ):
        self.orchestrator = orchestrator or SyncOrchestrator(session_factory=session_factory or async_session_maker)
        self.session_factory = session_factory or self.orchestrator.session_factory
        self._tasks: Set[asyncio.Task] = set()

    async def start_sync(
        self,
        trigger: SyncTrigger,
        extraction_filter: Optional[ExtractionFilter] = None,
        wait: bool = False
    ) -> SyncRun:
        """
        Raises:
            SyncAlreadyRunningError: A run is already active
        """
        run = await self.orchestrator.begin(trigger, extraction_filter)

        if wait:
            return await self.orchestrator.execute(run)

        task = asyncio.create_task(self.orchestrator.execute(run), name=f"sync-run-{run.run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def scheduled_sync(self) -> Optional[SyncRun]:
        """Job body for the scheduler: skip quietly if a run is active"""
        try:
            return await self.start_sync(SyncTrigger.SCHEDULED, wait=True)
        except SyncAlreadyRunningError as e:
            logger.info(f"Scheduled sync skipped, run {e.active_run_id} is active")
            return None

    async def cancel(self, run_id: Union[str, uuid.UUID]) -> SyncRunInfo:
        """
        Raises:
            SyncRunNotFoundError: Unknown run id
            InvalidRunTransitionError: Run already terminal
        """
        async with self.session_factory() as session:
            tracker = SyncRunTracker(session)
            run = await tracker.request_cancel(run_id)
            return run_info(run)

    async def get_run(self, run_id: Union[str, uuid.UUID]) -> SyncRunInfo:
        async with self.session_factory() as session:
            tracker = SyncRunTracker(session)
            return run_info(await tracker.get_run(run_id))

    async def list_runs(self, limit: int = 20) -> List[SyncRunInfo]:
        async with self.session_factory() as session:
            tracker = SyncRunTracker(session)
            return [run_info(run) for run in await tracker.recent_runs(limit)]

    async def status(self, recent: int = 5) -> SyncStatusResponse:
        async with self.session_factory() as session:
            tracker = SyncRunTracker(session)
            active = await tracker.active_run()
            runs = await tracker.recent_runs(recent)

            return SyncStatusResponse(
                sync_in_progress=active is not None,
                last_run=run_info(runs[0]) if runs else None,
                recent_runs=[run_info(run) for run in runs],
            )

    @property
    def running_tasks(self) -> int:
        return len(self._tasks)

    async def wait_for_background_runs(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
