"""
Persisted sync run state machine.

    started -> completed | failed | timeout | cancelled

Every transition is committed immediately so observers polling through
their own sessions see progress while a run is executing.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.exceptions import InvalidRunTransitionError, SyncAlreadyRunningError, SyncRunNotFoundError
from models.base import SyncStatus, SyncTrigger, utcnow
from models.sync_run import SyncRun
import logging
import uuid

logger = logging.getLogger(__name__)


def effective_status(
    run: SyncRun,
    stale_after: Optional[timedelta] = None,
    now: Optional[datetime] = None
) -> SyncStatus:
    """Status for display: a started run whose heartbeat is older than the stale window reads as timeout"""
    if stale_after is None:
        stale_after = timedelta(minutes=settings.SYNC_STALE_RUN_MINUTES)
    last_seen = run.heartbeat_at or run.started_at
    if run.status == SyncStatus.STARTED and last_seen < (now or utcnow()) - stale_after:
        return SyncStatus.TIMEOUT
    return run.status


class SyncRunTracker:
    """
    Create, advance and finalize SyncRun rows.

    Every progress write advances the run's heartbeat. A "started" run
    whose heartbeat is older than stale_after_minutes is considered
    orphaned (its worker died): readers show it as timeout and the next
    start_run finalizes it.
    """

    def __init__(self, db_session: AsyncSession, stale_after_minutes: Optional[int] = None):
        self.db = db_session
        self.stale_after = timedelta(
            minutes=settings.SYNC_STALE_RUN_MINUTES if stale_after_minutes is None else stale_after_minutes
        )

    def _stale_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - self.stale_after

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_run(self, run_id: Union[str, uuid.UUID]) -> SyncRun:
        """
        Raises:
            SyncRunNotFoundError: Unknown or malformed run id
        """
        try:
            key = run_id if isinstance(run_id, uuid.UUID) else uuid.UUID(str(run_id))
        except ValueError:
            raise SyncRunNotFoundError(f"Sync run {run_id} not found", context={"run_id": run_id})

        run = await self.db.scalar(select(SyncRun).where(SyncRun.run_id == key))
        if run is None:
            raise SyncRunNotFoundError(f"Sync run {run_id} not found", context={"run_id": run_id})
        return run

    async def latest_run(self) -> Optional[SyncRun]:
        return await self.db.scalar(
            select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
        )

    async def recent_runs(self, limit: int = 10) -> List[SyncRun]:
        result = await self.db.execute(
            select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def active_run(self, now: Optional[datetime] = None) -> Optional[SyncRun]:
        """Most recent started run with a live heartbeat"""
        return await self.db.scalar(
            select(SyncRun)
            .where(
                SyncRun.status == SyncStatus.STARTED,
                SyncRun.heartbeat_at >= self._stale_cutoff(now)
            )
            .order_by(SyncRun.started_at.desc())
            .limit(1)
        )

    def effective_status(self, run: SyncRun, now: Optional[datetime] = None) -> SyncStatus:
        return effective_status(run, self.stale_after, now)

    async def is_cancel_requested(self, run: SyncRun) -> bool:
        """Reads the flag from the database, not the identity map"""
        flag = await self.db.scalar(select(SyncRun.cancel_requested).where(SyncRun.id == run.id))
        return bool(flag)

    async def stop_reason(self, run: SyncRun) -> Optional[str]:
        """
        Why the worker executing this run must stop, or None.

        Reads the database, so a cancellation or a finalization made
        through another session is seen.
        """
        row = (await self.db.execute(
            select(SyncRun.status, SyncRun.cancel_requested).where(SyncRun.id == run.id)
        )).one_or_none()
        if row is None:
            return "Run no longer exists"
        status, cancel_requested = row
        if status.is_terminal:
            return f"Run was already finalized as {status.value}"
        if cancel_requested:
            return "Cancelled by operator"
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def cleanup_stale_runs(self, now: Optional[datetime] = None) -> int:
        """Finalize orphaned started runs (heartbeat older than the stale window) as timeout"""
        now = now or utcnow()
        result = await self.db.execute(
            select(SyncRun).where(
                SyncRun.status == SyncStatus.STARTED,
                SyncRun.heartbeat_at < self._stale_cutoff(now)
            )
        )
        stale_runs = result.scalars().all()

        for run in stale_runs:
            run.status = SyncStatus.TIMEOUT
            run.completed_at = now
            run.duration_seconds = (now - run.started_at).total_seconds()
            run.error_message = (
                f"Run reported no progress for {int(self.stale_after.total_seconds() // 60)} minutes "
                f"and was marked as timed out"
            )
            logger.warning(f"Marked orphaned sync run {run.run_id} as timeout")

        if stale_runs:
            await self.db.commit()
        return len(stale_runs)

    async def start_run(
        self,
        trigger: SyncTrigger,
        filter_snapshot: Optional[Dict[str, Any]] = None
    ) -> SyncRun:
        """
        Create a started run.

        Raises:
            SyncAlreadyRunningError: Another non-stale run is started; it is
                left untouched
        """
        await self.cleanup_stale_runs()

        active = await self.active_run()
        if active is not None:
            raise SyncAlreadyRunningError(
                "A catalog sync is already running",
                context={"started_at": active.started_at.isoformat(), "trigger": active.trigger.value},
                active_run_id=str(active.run_id)
            )

        now = utcnow()
        run = SyncRun(
            run_id=uuid.uuid4(),
            trigger=trigger,
            status=SyncStatus.STARTED,
            started_at=now,
            heartbeat_at=now,
            current_step="initialize",
            progress_percent=0,
            filter_snapshot=filter_snapshot,
        )
        self.db.add(run)
        await self.db.commit()
        await self.db.refresh(run)

        logger.info(f"Started sync run {run.run_id} (trigger={trigger.value})")
        return run

    async def update_progress(self, run: SyncRun, step: str, percent: int, operation_id: Optional[str] = None):
        run.current_step = step
        run.progress_percent = max(0, min(100, int(percent)))
        if operation_id is not None:
            run.operation_id = operation_id
        run.heartbeat_at = utcnow()
        await self.db.commit()

    async def add_counts(
        self,
        run: SyncRun,
        fetched: int = 0,
        written: int = 0,
        skipped: int = 0,
        failed: int = 0
    ):
        run.records_fetched += fetched
        run.records_written += written
        run.records_skipped += skipped
        run.records_failed += failed
        run.heartbeat_at = utcnow()
        await self.db.commit()

    async def heartbeat(self, run: SyncRun):
        """Mark the run alive without changing its progress"""
        run.heartbeat_at = utcnow()
        await self.db.commit()

    async def request_cancel(self, run_id: Union[str, uuid.UUID]) -> SyncRun:
        """
        Flag a started run for cooperative cancellation.

        Raises:
            SyncRunNotFoundError: Unknown run id
            InvalidRunTransitionError: Run already terminal
        """
        run = await self.get_run(run_id)
        if run.status.is_terminal:
            raise InvalidRunTransitionError(
                f"Sync run {run.run_id} already {run.status.value}",
                context={"run_id": str(run.run_id), "status": run.status.value}
            )

        run.cancel_requested = True
        await self.db.commit()
        logger.info(f"Cancellation requested for sync run {run.run_id}")
        return run

    async def finish(
        self,
        run: SyncRun,
        status: SyncStatus,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        hook_errors: Optional[List[Dict[str, Any]]] = None
    ) -> SyncRun:
        """
        Move a run to a terminal status, exactly once.

        Raises:
            InvalidRunTransitionError: Target is not terminal or the run
                already is
        """
        if not status.is_terminal:
            raise InvalidRunTransitionError(
                f"{status.value} is not a terminal status",
                context={"run_id": str(run.run_id)}
            )

        await self.db.refresh(run)
        if run.status.is_terminal:
            raise InvalidRunTransitionError(
                f"Sync run {run.run_id} already {run.status.value}",
                context={"run_id": str(run.run_id), "status": run.status.value, "requested": status.value}
            )

        now = utcnow()
        run.status = status
        run.completed_at = now
        run.duration_seconds = (now - run.started_at).total_seconds()
        run.error_message = error_message
        run.error_details = error_details
        if hook_errors:
            run.hook_errors = hook_errors
        if status == SyncStatus.COMPLETED:
            run.current_step = "done"
            run.progress_percent = 100

        await self.db.commit()
        await self.db.refresh(run)

        logger.info(
            f"Sync run {run.run_id} finished: {status.value} "
            f"(written={run.records_written}, skipped={run.records_skipped}, "
            f"failed={run.records_failed}, {run.duration_seconds:.1f}s)"
        )
        return run
