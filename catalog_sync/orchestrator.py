# ============================================================================
# File: catalog_sync/orchestrator.py
# Description: Catalog sync orchestrator with run tracking and cancellation
# ============================================================================
"""
Sync Orchestrator - runs Extract, Stage, Transform, Load and post-processing.

This module provides the end-to-end catalog sync with:
- One active run per process (run-state check guarded by an asyncio.Lock)
- Batched staging and catalog upserts with progress reporting
- Cooperative cancellation checked between batches and while polling
- Error classification into failed / timeout / cancelled run statuses
- Post-processing hooks whose failures never fail the run
"""

from collections import Counter
from typing import Any, Callable, Dict, List, Optional
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import asyncio
import logging

from catalog_sync.aliases import AliasResolver
from catalog_sync.extractors.bulk_extractor import BulkCatalogExtractor
from catalog_sync.extractors.queries import ExtractionFilter
from catalog_sync.hooks import HookRegistry, PostSyncContext, hook_registry
from catalog_sync.loaders.catalog_loader import CatalogLoader
from catalog_sync.loaders.raw_loader import RawCatalogLoader
from catalog_sync.run_tracker import SyncRunTracker
from catalog_sync.transformers.catalog_transformer import CatalogTransformer
from catalog_sync.transformers.pipeline_config import DEFAULT_PIPELINE, PipelineDefinition, RejectionReason
from core.config import settings
from core.database import async_session_maker
from core.exceptions import (
    BackupError,
    CatalogSyncError,
    DatabaseError,
    ExtractionError,
    ExtractionTimeoutError,
    InvalidRunTransitionError,
    LoadError,
    SyncCancelledError,
)
from models.base import SyncStatus, SyncTrigger
from models.raw_catalog import RawCatalogRecord
from models.sync_run import SyncRun
from schemas.raw import RawVariantRecord

logger = logging.getLogger(__name__)

# step -> (progress at start, progress at end)
STEP_PROGRESS = {
    "initialize": (5, 5),
    "fetch": (10, 10),
    "ingest_raw": (10, 50),
    "transform": (50, 95),
    "post_process": (95, 95),
}


def _interpolate(step: str, done: int, total: int) -> int:
    start, end = STEP_PROGRESS[step]
    if total <= 0:
        return start
    return start + int((end - start) * min(1.0, done / total))


class SyncOrchestrator:
    """
    Catalog sync orchestrator

    Responsibilities:
    - Reject a start while another run is active
    - Drive extract -> stage -> transform -> load -> hooks
    - Keep SyncRun progress and counts current for observers
    - Finalize every run it started exactly once
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_maker,
        extractor_factory: Callable[[], BulkCatalogExtractor] = BulkCatalogExtractor,
        hooks: HookRegistry = hook_registry,
        pipeline: PipelineDefinition = DEFAULT_PIPELINE,
        batch_size: Optional[int] = None,
        backup_enabled: Optional[bool] = None,
        backup_retention_days: Optional[int] = None,
        excluded_tokens: Optional[List[str]] = None
    ):
        self.session_factory = session_factory
        self.extractor_factory = extractor_factory
        self.hooks = hooks
        self.pipeline = pipeline
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.backup_enabled = settings.SYNC_BACKUP_ENABLED if backup_enabled is None else backup_enabled
        self.backup_retention_days = (
            settings.SYNC_BACKUP_RETENTION_DAYS if backup_retention_days is None else backup_retention_days
        )
        self.excluded_tokens = list(
            settings.SYNC_EXCLUDED_COLLECTION_TOKENS if excluded_tokens is None else excluded_tokens
        )
        self._start_lock = asyncio.Lock()

    async def begin(self, trigger: SyncTrigger, extraction_filter: Optional[ExtractionFilter] = None) -> SyncRun:
        """
        Create the started run.

        Raises:
            SyncAlreadyRunningError: A run is already active (left untouched)
        """
        extraction_filter = extraction_filter or ExtractionFilter(product_status=settings.SYNC_PRODUCT_STATUS)
        snapshot = {
            "filter": extraction_filter.to_dict(),
            "pipeline_version": self.pipeline.version,
            "excluded_collection_tokens": self.excluded_tokens,
            "batch_size": self.batch_size,
        }

        async with self._start_lock:
            async with self.session_factory() as session:
                return await SyncRunTracker(session).start_run(trigger, filter_snapshot=snapshot)

    async def run(self, trigger: SyncTrigger, extraction_filter: Optional[ExtractionFilter] = None) -> SyncRun:
        run = await self.begin(trigger, extraction_filter)
        return await self.execute(run)

    async def execute(self, run: SyncRun) -> SyncRun:
        """
        Execute a started run to a terminal status.

        Pipeline errors do not propagate; they end the run:
            ExtractionTimeoutError             -> timeout
            SyncCancelledError                 -> cancelled
            ExtractionError, LoadError, other  -> failed

        Returns:
            The finalized run
        """
        async with self.session_factory() as session:
            run = await session.get(SyncRun, run.id)
            run_label = str(run.run_id)
            tracker = SyncRunTracker(session)
            extraction_filter = ExtractionFilter(**(run.filter_snapshot or {}).get("filter", {}))

            try:
                hook_errors = await self._execute_phases(session, tracker, run, extraction_filter)
                return await self._finish(tracker, run, run_label, SyncStatus.COMPLETED, hook_errors=hook_errors)

            except SyncCancelledError as e:
                logger.warning(f"Sync run {run_label} cancelled: {e.message}")
                await session.rollback()
                return await self._finish(tracker, run, run_label, SyncStatus.CANCELLED, error_message=e.message)

            except ExtractionTimeoutError as e:
                logger.error(
                    f"Sync run {run_label} timed out: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                await session.rollback()
                return await self._finish(
                    tracker, run, run_label, SyncStatus.TIMEOUT, error_message=e.message, error_details=e.to_dict()
                )

            except (ExtractionError, LoadError) as e:
                logger.error(
                    f"Sync run {run_label} failed: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                await session.rollback()
                return await self._finish(
                    tracker, run, run_label, SyncStatus.FAILED, error_message=e.message, error_details=e.to_dict()
                )

            except Exception as e:
                logger.exception(f"Unexpected error in sync run {run_label}")
                await session.rollback()
                if isinstance(e, CatalogSyncError):
                    message, details = e.message, e.to_dict()
                else:
                    message, details = str(e), {"error_type": type(e).__name__, "message": str(e)}
                return await self._finish(
                    tracker, run, run_label, SyncStatus.FAILED, error_message=message, error_details=details
                )

    async def _finish(
        self, tracker: SyncRunTracker, run: SyncRun, run_label: str, status: SyncStatus, **kwargs
    ) -> SyncRun:
        try:
            return await tracker.finish(run, status, **kwargs)
        except InvalidRunTransitionError as e:
            logger.warning(f"Could not finalize sync run {run_label} as {status.value}: {e.message}")
            return run

    async def _execute_phases(
        self,
        session: AsyncSession,
        tracker: SyncRunTracker,
        run: SyncRun,
        extraction_filter: ExtractionFilter
    ) -> List[Dict[str, Any]]:
        stats: Dict[str, Any] = {"pipeline_version": self.pipeline.version}

        async def check_cancelled():
            reason = await tracker.stop_reason(run)
            if reason is not None:
                raise SyncCancelledError(
                    reason,
                    context={"run_id": str(run.run_id), "step": run.current_step}
                )

        async def poll_check() -> bool:
            # status polls can span the whole polling budget; keep the run alive
            if await tracker.stop_reason(run) is not None:
                return True
            await tracker.heartbeat(run)
            return False

        # --------------------------------------------------
        # PHASE 1: INITIALIZE (BACKUP + RETENTION)
        # --------------------------------------------------
        await tracker.update_progress(run, "initialize", STEP_PROGRESS["initialize"][0])
        catalog_loader = CatalogLoader(session)

        if self.backup_enabled:
            try:
                run.backup_table = await catalog_loader.backup()
                await catalog_loader.cleanup_backups(self.backup_retention_days)
            except BackupError as e:
                # a missing backup does not block the sync
                await session.refresh(run)
                stats["backup_error"] = e.message
                logger.warning(
                    f"Pre-sync backup failed, continuing: {e.message}",
                    extra={"error_context": e.to_dict()}
                )

        await check_cancelled()

        # --------------------------------------------------
        # PHASE 2: FETCH (SUBMIT + POLL)
        # --------------------------------------------------
        await tracker.update_progress(run, "fetch", STEP_PROGRESS["fetch"][0])
        extractor = self.extractor_factory()
        records = extractor.extract(extraction_filter, cancel_check=poll_check)

        # --------------------------------------------------
        # PHASE 3: INGEST RAW (STAGING UPSERT)
        # --------------------------------------------------
        raw_loader = RawCatalogLoader(session)
        fetched = 0
        batch: List[RawVariantRecord] = []

        async def stage_batch():
            nonlocal fetched
            staged = await raw_loader.load(batch, sync_run_id=run.id)
            fetched += staged
            batch.clear()
            run.records_fetched += staged
            await tracker.update_progress(
                run,
                "ingest_raw",
                _interpolate("ingest_raw", fetched, extractor.stats.object_count),
                operation_id=extractor.stats.operation_id
            )
            await check_cancelled()

        try:
            async for record in records:
                batch.append(record)
                if len(batch) >= self.batch_size:
                    await stage_batch()
            if batch:
                await stage_batch()
        finally:
            await records.aclose()

        stats["extraction"] = extractor.stats.to_dict()
        await tracker.add_counts(run, failed=extractor.stats.malformed)
        await tracker.update_progress(
            run, "ingest_raw", STEP_PROGRESS["ingest_raw"][1], operation_id=extractor.stats.operation_id
        )
        logger.info(f"Staged {fetched} variants ({extractor.stats.malformed} malformed lines skipped)")

        # --------------------------------------------------
        # PHASE 4: TRANSFORM + LOAD CATALOG
        # --------------------------------------------------
        await tracker.update_progress(run, "transform", STEP_PROGRESS["transform"][0])

        resolver = await AliasResolver.load(session)
        transformer = CatalogTransformer(resolver, pipeline=self.pipeline, excluded_tokens=self.excluded_tokens)
        rejections: Counter = Counter()
        seen_skus = set()
        written_sku_ids: List[str] = []
        processed = 0

        async for raw_rows in self._staged_batches(session, run):
            items = []
            skipped = 0
            failed = 0

            for raw in raw_rows:
                try:
                    result = transformer.transform(raw)
                except ValidationError as e:
                    failed += 1
                    logger.error(
                        f"Transform failed for {raw.source_id}: {e}",
                        extra={"error_context": {"source_id": raw.source_id, "phase": "transform"}}
                    )
                    continue

                if not result.ok:
                    skipped += 1
                    rejections[result.reason.value] += 1
                elif result.item.sku_id in seen_skus:
                    skipped += 1
                    rejections[RejectionReason.DUPLICATE_SKU.value] += 1
                else:
                    seen_skus.add(result.item.sku_id)
                    items.append(result.item)

            written = await catalog_loader.load(items, sync_run_id=run.id)
            written_sku_ids.extend(item.sku_id for item in items)
            await resolver.recorder.flush(session)

            processed += len(raw_rows)
            await tracker.add_counts(run, written=written, skipped=skipped, failed=failed)
            await tracker.update_progress(run, "transform", _interpolate("transform", processed, fetched))
            await check_cancelled()

        stats["rejections"] = dict(rejections)
        stats["alias_hits"] = resolver.recorder.hits
        stats["alias_misses"] = resolver.recorder.misses
        run.stats = stats
        logger.info(
            f"Transform complete: {run.records_written} written, {run.records_skipped} skipped, "
            f"{run.records_failed} failed; rejections={dict(rejections)}"
        )

        # --------------------------------------------------
        # PHASE 5: POST-PROCESS (HOOKS)
        # --------------------------------------------------
        await tracker.update_progress(run, "post_process", STEP_PROGRESS["post_process"][0])
        return await self.hooks.run_all(
            PostSyncContext(run=run, session=session, written_sku_ids=written_sku_ids, stats=stats)
        )

    async def _staged_batches(self, session: AsyncSession, run: SyncRun):
        """Rows staged by this run, in staging order, batch_size at a time"""
        last_id = 0
        while True:
            try:
                result = await session.execute(
                    select(RawCatalogRecord)
                    .where(RawCatalogRecord.sync_run_id == run.id, RawCatalogRecord.id > last_id)
                    .order_by(RawCatalogRecord.id)
                    .limit(self.batch_size)
                )
                rows = list(result.scalars().all())
            except Exception as e:
                raise DatabaseError(
                    "Failed to read staged catalog records",
                    context={"operation": "SELECT", "table_name": "raw_catalog_records", "after_id": last_id},
                    original_exception=e
                )

            if not rows:
                return
            last_id = rows[-1].id
            yield rows
