"""
API endpoint tests
"""

import pytest
import pytest_asyncio
import httpx
from decimal import Decimal
from sqlalchemy import select
from api.main import app
from api.dependencies import get_db, get_sync_service
from catalog_sync.hooks import HookRegistry
from catalog_sync.orchestrator import SyncOrchestrator
from catalog_sync.run_tracker import SyncRunTracker
from catalog_sync.service import SyncService
from core.config import settings
from core.security import compute_webhook_signature
from models import AliasMapping, CatalogItem, MappingStatus, SizeAlias
from models.base import SyncStatus, SyncTrigger
from conftest import FakeBulkSource, FakeClock, make_extractor, seed_collection


@pytest.fixture
def sync_service(session_factory, sample_jsonl):
    clock = FakeClock()
    source = FakeBulkSource(jsonl=sample_jsonl)
    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        extractor_factory=lambda: make_extractor(source, clock),
        hooks=HookRegistry(),
        backup_enabled=False,
    )
    return SyncService(orchestrator=orchestrator)


@pytest_asyncio.fixture
async def client(session_factory, sync_service):
    """Test client with database and sync service overrides"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = lambda: sync_service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def add_catalog_item(session, sku_id, size, product_id="gid://shopify/Product/77", **overrides):
    fields = dict(
        sku_id=sku_id,
        size=size,
        description=f"Ribbed Tee - {size}",
        quantity=3,
        source_product_id=product_id,
        price_cad=Decimal("30.00"),
        price_usd=Decimal("24.00"),
        units_per_sku=1,
    )
    fields.update(overrides)
    session.add(CatalogItem(**fields))


# ============================================================================
# Health
# ============================================================================

@pytest.mark.asyncio
async def test_health_without_runs(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["databaseConnected"] is True
    assert data["lastRunStatus"] is None
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_health_degraded_after_failed_run(client, db_session):
    tracker = SyncRunTracker(db_session)
    run = await tracker.start_run(SyncTrigger.MANUAL)
    await tracker.finish(run, SyncStatus.FAILED, error_message="boom")

    data = (await client.get("/health")).json()

    assert data["status"] == "degraded"
    assert data["lastRunStatus"] == "failed"


# ============================================================================
# Sync control
# ============================================================================

@pytest.mark.asyncio
async def test_start_and_observe_sync(client, db_session, sync_service):
    await seed_collection(db_session, "Spring 26")

    response = await client.post("/sync/runs", json={"productStatus": "active"})

    assert response.status_code == 202
    body = response.json()
    run_id = body["run"]["id"]
    assert body["run"]["status"] == "started"
    assert body["run"]["trigger"] == "manual"

    await sync_service.wait_for_background_runs()

    status = (await client.get("/sync/status")).json()
    assert status["syncInProgress"] is False
    assert status["lastRun"]["id"] == run_id
    assert status["lastRun"]["status"] == "completed"
    assert status["lastRun"]["progressPercent"] == 100
    assert status["lastRun"]["recordsProcessed"] == 2

    detail = await client.get(f"/sync/runs/{run_id}")
    assert detail.status_code == 200
    assert detail.json()["recordsWritten"] == 2

    runs = (await client.get("/sync/runs")).json()
    assert [r["id"] for r in runs] == [run_id]


@pytest.mark.asyncio
async def test_start_while_running_returns_409(client, db_session):
    active = await SyncRunTracker(db_session).start_run(SyncTrigger.SCHEDULED)

    response = await client.post("/sync/runs")

    assert response.status_code == 409
    assert response.json()["activeRunId"] == str(active.run_id)


@pytest.mark.asyncio
async def test_cancel_run(client, db_session):
    tracker = SyncRunTracker(db_session)
    run = await tracker.start_run(SyncTrigger.MANUAL)

    response = await client.post(f"/sync/runs/{run.run_id}/cancel")
    assert response.status_code == 202
    assert response.json()["run"]["cancelRequested"] is True

    await tracker.finish(run, SyncStatus.CANCELLED)
    response = await client.post(f"/sync/runs/{run.run_id}/cancel")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_run_returns_404(client):
    assert (await client.get("/sync/runs/00000000-0000-0000-0000-000000000000")).status_code == 404
    assert (await client.post("/sync/runs/not-a-run/cancel")).status_code == 404


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    assert (await client.get("/sync/status")).status_code == 401
    assert (await client.get("/sync/status", headers={"X-API-Key": "wrong"})).status_code == 401
    assert (await client.get("/sync/status", headers={"X-API-Key": "secret-key"})).status_code == 200


# ============================================================================
# Webhooks
# ============================================================================

@pytest.mark.asyncio
async def test_webhook_signature(client, monkeypatch, sync_service):
    monkeypatch.setattr(settings, "SHOPIFY_WEBHOOK_SECRET", "hush")
    body = b'{"id": 1}'

    bad = await client.post("/webhooks/catalog-sync", content=body, headers={"X-Shopify-Hmac-Sha256": "nope"})
    assert bad.status_code == 401

    good = await client.post(
        "/webhooks/catalog-sync",
        content=body,
        headers={"X-Shopify-Hmac-Sha256": compute_webhook_signature(body, "hush")}
    )
    assert good.status_code == 202
    assert good.json()["accepted"] is True
    assert good.json()["run"]["trigger"] == "webhook"

    await sync_service.wait_for_background_runs()


@pytest.mark.asyncio
async def test_webhook_during_active_run_is_acknowledged(client, db_session, monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")
    active = await SyncRunTracker(db_session).start_run(SyncTrigger.MANUAL)

    response = await client.post("/webhooks/catalog-sync", content=b"{}")

    assert response.status_code == 200
    assert response.json() == {
        "accepted": False,
        "message": "A catalog sync is already running",
        "activeRunId": str(active.run_id),
    }


@pytest.mark.asyncio
async def test_unsigned_webhook_rejected_outside_development(client, db_session, monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")

    response = await client.post("/webhooks/catalog-sync", content=b"{}")

    assert response.status_code == 401
    assert await SyncRunTracker(db_session).latest_run() is None


# ============================================================================
# Alias administration
# ============================================================================

@pytest.mark.asyncio
async def test_alias_signal_workflow(client, db_session):
    collection = await seed_collection(db_session, "Spring 26")
    signal = AliasMapping(raw_value="SPRING-26", status=MappingStatus.UNMAPPED, observation_count=4)
    db_session.add(signal)
    await db_session.commit()

    signals = (await client.get("/aliases/signals")).json()
    assert [s["rawValue"] for s in signals] == ["SPRING-26"]

    deferred = await client.post(f"/aliases/{signal.id}/defer", json={"note": "confirm with buyer"})
    assert deferred.json()["status"] == "deferred"
    assert (await client.get("/aliases/signals")).json() == []
    assert len((await client.get("/aliases/signals?include_deferred=true")).json()) == 1

    assigned = await client.post(f"/aliases/{signal.id}/assign", json={"collectionId": collection.id})
    assert assigned.status_code == 200
    assert assigned.json()["status"] == "mapped"
    assert assigned.json()["collectionId"] == collection.id

    unmapped = await client.post(f"/aliases/{signal.id}/unmap")
    assert unmapped.json()["status"] == "unmapped"


@pytest.mark.asyncio
async def test_alias_errors(client, db_session):
    signal = AliasMapping(raw_value="X", status=MappingStatus.UNMAPPED)
    db_session.add(signal)
    await db_session.commit()

    assert (await client.post("/aliases/999/assign", json={"collectionId": 1})).status_code == 404
    assert (await client.post(f"/aliases/{signal.id}/assign", json={"collectionId": 42})).status_code == 404
    assert (await client.post(f"/aliases/{signal.id}/assign", json={"collectionId": 0})).status_code == 422


@pytest.mark.asyncio
async def test_bulk_assign(client, db_session):
    collection = await seed_collection(db_session, "Core")
    signals = [AliasMapping(raw_value=v, status=MappingStatus.UNMAPPED) for v in ("core", "CORE")]
    db_session.add_all(signals)
    await db_session.commit()

    response = await client.post(
        "/aliases/bulk-assign",
        json={"mappingIds": [s.id for s in signals], "collectionId": collection.id}
    )

    assert response.status_code == 200
    assert response.json() == {"updated": 2}


@pytest.mark.asyncio
async def test_size_alias_upsert(client, db_session):
    response = await client.put("/size-aliases", json={"aliases": [
        {"rawSize": "XS/S (6-8)", "canonicalSize": "XS", "updatedBy": "ops"},
    ]})
    assert response.status_code == 200

    response = await client.put("/size-aliases", json={"aliases": [
        {"rawSize": "XS/S (6-8)", "canonicalSize": "S"},
    ]})
    assert response.json() == [{"rawSize": "XS/S (6-8)", "canonicalSize": "S", "updatedBy": None}]

    rows = (await db_session.execute(select(SizeAlias))).scalars().all()
    assert len(rows) == 1


# ============================================================================
# Catalog
# ============================================================================

@pytest.mark.asyncio
async def test_catalog_pagination_and_filters(client, db_session):
    for sku, size in (("XY-1", "S"), ("XY-2", "M"), ("XY-3", "L")):
        add_catalog_item(db_session, sku, size)
    add_catalog_item(db_session, "PO-1", "M", is_pre_order=True)
    await db_session.commit()

    page = (await client.get("/catalog?page=1&page_size=2")).json()
    assert [i["sku_id"] for i in page["items"]] == ["PO-1", "XY-1"]
    assert page["pagination"]["totalItems"] == 4
    assert page["pagination"]["hasNext"] is True

    pre_order = (await client.get("/catalog?is_pre_order=true")).json()
    assert [i["sku_id"] for i in pre_order["items"]] == ["PO-1"]

    medium = (await client.get("/catalog?size=m")).json()
    assert {i["sku_id"] for i in medium["items"]} == {"PO-1", "XY-2"}


@pytest.mark.asyncio
async def test_product_variants_sorted_by_size(client, db_session):
    db_session.add(SizeAlias(raw_size="Tall", canonical_size="XL"))
    for sku, size in (("XY-A", "Tall"), ("XY-B", "XS"), ("XY-C", "Unknown"), ("XY-D", "M")):
        add_catalog_item(db_session, sku, size)
    await db_session.commit()

    response = await client.get("/catalog/products/77/variants")

    assert response.status_code == 200
    assert [v["size"] for v in response.json()] == ["XS", "M", "Tall", "Unknown"]
    assert (await client.get("/catalog/products/12345/variants")).status_code == 404
