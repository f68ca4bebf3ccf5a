"""
End-to-end tests of a sync run against an in-memory database
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select
from catalog_sync.hooks import HookRegistry
from catalog_sync.orchestrator import SyncOrchestrator
from catalog_sync.run_tracker import SyncRunTracker
from catalog_sync.service import SyncService
from core.exceptions import SyncAlreadyRunningError
from models import AliasMapping, CatalogItem, Collection, CollectionType, MappingStatus, RawCatalogRecord, SyncRun
from models.base import SyncStatus, SyncTrigger, utcnow
from conftest import FakeBulkSource, FakeClock, make_extractor, seed_collection, to_jsonl, variant_line


def make_orchestrator(session_factory, source, hooks=None, **kwargs):
    clock = FakeClock()
    return SyncOrchestrator(
        session_factory=session_factory,
        extractor_factory=lambda: make_extractor(source, clock),
        hooks=hooks or HookRegistry(),
        backup_enabled=False,
        excluded_tokens=["GROUP", "Defective"],
        **kwargs
    )


async def catalog(session):
    session.expire_all()
    result = await session.execute(select(CatalogItem).order_by(CatalogItem.sku_id))
    return {item.sku_id: item for item in result.scalars().all()}


@pytest.mark.asyncio
async def test_end_to_end_pack_sku(db_session, session_factory, sample_jsonl):
    """2PC-XY-6: two units per SKU, unit price halved, on route 10 - 2"""
    await seed_collection(db_session, "Spring 26", CollectionType.ATS)
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl, object_count=5))

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.COMPLETED
    assert run.progress_percent == 100
    assert run.records_fetched == 2
    assert run.records_written == 2
    assert run.operation_id == "gid://shopify/BulkOperation/1"
    assert run.stats["pipeline_version"] == "1"
    assert run.stats["extraction"]["inventory_levels"] == 3

    items = await catalog(db_session)
    pack = items["2PC-XY-6"]
    assert pack.units_per_sku == 2
    assert pack.price_cad == Decimal("30.00")
    assert pack.unit_price_cad == Decimal("15.00")
    assert pack.unit_price_usd == Decimal("12.00")
    assert pack.on_route == 8
    assert pack.is_pre_order is False
    assert pack.size == "6"
    assert pack.color == "Black, Pink"
    assert pack.sync_run_id == run.id

    single = items["XY-4"]
    assert single.units_per_sku == 1
    assert single.on_route == -3
    assert single.size == "4"


@pytest.mark.asyncio
async def test_rerun_is_idempotent(db_session, session_factory, sample_jsonl):
    await seed_collection(db_session, "Spring 26")
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl))

    first = await orchestrator.run(SyncTrigger.MANUAL)
    second = await orchestrator.run(SyncTrigger.SCHEDULED)

    assert first.status == second.status == SyncStatus.COMPLETED
    assert len(await catalog(db_session)) == 2
    raw_rows = (await db_session.execute(select(RawCatalogRecord))).scalars().all()
    assert len(raw_rows) == 2


@pytest.mark.asyncio
async def test_rejections_and_signals(db_session, session_factory):
    await seed_collection(db_session, "Spring 26")
    await seed_collection(db_session, "Fall 26", CollectionType.PRE_ORDER)
    jsonl = to_jsonl(
        variant_line(1, "XY-1"),
        variant_line(2, "XY-2", collection="Fall 26"),
        variant_line(3, "NOHYPHEN"),
        variant_line(4, "XY-4", collection="Spring 26 GROUP"),
        variant_line(5, "XY-5", collection="Mystery Capsule"),
        variant_line(6, "xy-1"),
        variant_line(7, "XY-7", usd=None),
    )
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=jsonl), batch_size=3)

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.COMPLETED
    assert run.records_written == 2
    assert run.records_skipped == 5
    assert run.stats["rejections"] == {
        "invalid_sku": 1,
        "excluded_collection": 1,
        "unresolved_collection": 1,
        "duplicate_sku": 1,
        "missing_price": 1,
    }

    items = await catalog(db_session)
    assert set(items) == {"XY-1", "XY-2"}
    assert items["XY-2"].is_pre_order is True
    # the first staged variant wins a duplicate sku
    assert items["XY-1"].source_variant_id == 1

    signal = await db_session.scalar(select(AliasMapping).where(AliasMapping.raw_value == "Mystery Capsule"))
    assert signal.status == MappingStatus.UNMAPPED
    assert signal.observation_count == 1


@pytest.mark.asyncio
async def test_malformed_lines_count_as_failed(db_session, session_factory):
    await seed_collection(db_session, "Spring 26")
    jsonl = to_jsonl(variant_line(1, "XY-1"), "{broken", variant_line(2, "XY-2"))
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=jsonl))

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.COMPLETED
    assert run.records_written == 2
    assert run.records_failed == 1


@pytest.mark.asyncio
async def test_hook_failure_does_not_fail_run(db_session, session_factory, sample_jsonl):
    await seed_collection(db_session, "Spring 26")
    hooks = HookRegistry()
    seen = []

    @hooks.register("thumbnails")
    async def thumbnails(ctx):
        raise RuntimeError("image service unavailable")

    @hooks.register("notify")
    async def notify(ctx):
        seen.extend(ctx.written_sku_ids)

    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl), hooks=hooks)

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.COMPLETED
    assert run.hook_errors == [
        {"hook": "thumbnails", "error_type": "RuntimeError", "error_message": "image service unavailable"}
    ]
    assert sorted(seen) == ["2PC-XY-6", "XY-4"]


@pytest.mark.asyncio
async def test_hook_database_error_does_not_fail_run(db_session, session_factory, sample_jsonl):
    await seed_collection(db_session, "Spring 26")
    hooks = HookRegistry()

    @hooks.register("audit")
    async def duplicate_item(ctx):
        ctx.session.add(CatalogItem(sku_id="2PC-XY-6"))
        await ctx.session.flush()

    @hooks.register("tag")
    async def add_collection(ctx):
        ctx.session.add(Collection(name="Hooked", type=CollectionType.ATS))

    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl), hooks=hooks)

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.COMPLETED
    assert [e["hook"] for e in run.hook_errors] == ["audit"]
    assert run.hook_errors[0]["error_type"] == "IntegrityError"
    assert run.records_written == 2

    # the hook after the failed one still ran and its work was kept
    assert await db_session.scalar(select(Collection).where(Collection.name == "Hooked")) is not None
    assert len(await catalog(db_session)) == 2


@pytest.mark.asyncio
async def test_live_run_is_not_timed_out_by_next_start(db_session, session_factory, sample_jsonl):
    await seed_collection(db_session, "Spring 26")
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl))
    live = await orchestrator.begin(SyncTrigger.SCHEDULED)

    # long-running but still reporting progress
    row = await db_session.get(SyncRun, live.id)
    row.started_at = utcnow() - timedelta(hours=3)
    await db_session.commit()
    await SyncRunTracker(db_session).update_progress(row, "ingest_raw", 30)

    with pytest.raises(SyncAlreadyRunningError) as exc_info:
        await orchestrator.begin(SyncTrigger.MANUAL)
    assert exc_info.value.active_run_id == str(live.run_id)

    db_session.expire_all()
    assert (await db_session.get(SyncRun, live.id)).status == SyncStatus.STARTED
    assert len((await db_session.execute(select(SyncRun))).scalars().all()) == 1

    finished = await orchestrator.execute(live)

    assert finished.status == SyncStatus.COMPLETED
    assert finished.records_written == 2


@pytest.mark.asyncio
async def test_run_finalized_elsewhere_stops_writing(db_session, session_factory):
    await seed_collection(db_session, "Spring 26")
    jsonl = to_jsonl(*(variant_line(i, f"XY-{i}") for i in range(1, 7)))
    source = FakeBulkSource(jsonl=jsonl)
    clock = FakeClock()

    def extractor_factory():
        extractor = make_extractor(source, clock)
        stream = extractor.stream_records

        async def stream_then_time_out(client, url):
            # another worker decided this run is dead
            async with session_factory() as session:
                tracker = SyncRunTracker(session)
                active = await tracker.active_run()
                await tracker.finish(active, SyncStatus.TIMEOUT, error_message="no progress")
            async for record in stream(client, url):
                yield record

        extractor.stream_records = stream_then_time_out
        return extractor

    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        extractor_factory=extractor_factory,
        hooks=HookRegistry(),
        backup_enabled=False,
        batch_size=2,
    )

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.TIMEOUT
    assert run.error_message == "no progress"
    assert await catalog(db_session) == {}


@pytest.mark.asyncio
async def test_extraction_failure_marks_run_failed(session_factory):
    source = FakeBulkSource(statuses=["RUNNING", "FAILED"], error_code="INTERNAL_SERVER_ERROR")
    orchestrator = make_orchestrator(session_factory, source)

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.FAILED
    assert "FAILED" in run.error_message
    assert run.error_details["error_type"] == "BulkOperationError"
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_polling_timeout_marks_run_timeout(session_factory):
    source = FakeBulkSource(statuses=["RUNNING"])
    clock = FakeClock()
    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        extractor_factory=lambda: make_extractor(source, clock, max_wait=5.0),
        hooks=HookRegistry(),
        backup_enabled=False,
    )

    run = await orchestrator.run(SyncTrigger.SCHEDULED)

    assert run.status == SyncStatus.TIMEOUT
    assert run.current_step == "fetch"


@pytest.mark.asyncio
async def test_cancellation_between_batches(db_session, session_factory):
    await seed_collection(db_session, "Spring 26")
    jsonl = to_jsonl(*(variant_line(i, f"XY-{i}") for i in range(1, 7)))
    source = FakeBulkSource(jsonl=jsonl)
    clock = FakeClock()

    def extractor_factory():
        extractor = make_extractor(source, clock)
        stream = extractor.stream_records

        async def stream_then_cancel(client, url):
            # operator cancels as soon as the download starts
            async with session_factory() as session:
                tracker = SyncRunTracker(session)
                await tracker.request_cancel((await tracker.active_run()).run_id)
            async for record in stream(client, url):
                yield record

        extractor.stream_records = stream_then_cancel
        return extractor

    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        extractor_factory=extractor_factory,
        hooks=HookRegistry(),
        backup_enabled=False,
        batch_size=2,
    )

    run = await orchestrator.run(SyncTrigger.MANUAL)

    assert run.status == SyncStatus.CANCELLED
    assert run.cancel_requested is True
    assert run.records_fetched == 2
    assert await catalog(db_session) == {}


@pytest.mark.asyncio
async def test_service_wait_and_status(db_session, session_factory, sample_jsonl):
    await seed_collection(db_session, "Spring 26")
    orchestrator = make_orchestrator(session_factory, FakeBulkSource(jsonl=sample_jsonl))
    service = SyncService(orchestrator=orchestrator)

    run = await service.start_sync(SyncTrigger.MANUAL)
    await service.wait_for_background_runs()

    status = await service.status()
    assert status.sync_in_progress is False
    assert status.last_run.id == str(run.run_id)
    assert status.last_run.status == SyncStatus.COMPLETED
    assert status.last_run.records_processed == 2
