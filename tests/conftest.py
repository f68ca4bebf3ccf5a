"""
Pytest configuration and fixtures
"""

import os

# Settings are read at import time; keep the suite off PostgreSQL and the scheduler
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"
os.environ["SYNC_BACKUP_ENABLED"] = "false"

import json
from typing import AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_sync.extractors.bulk_extractor import BulkCatalogExtractor
from models import AliasMapping, Base, Collection, CollectionType, MappingStatus

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
GRAPHQL_URL = "https://test-store.myshopify.com/admin/api/2024-01/graphql.json"
RESULT_URL = "https://storage.example.com/bulk/result.jsonl"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """In-memory database shared by every session of one test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Catalog fixtures
# ============================================================================

async def seed_collection(
    session: AsyncSession,
    name: str,
    collection_type: CollectionType = CollectionType.ATS,
    aliases: Optional[List[str]] = None
) -> Collection:
    """Create a collection plus "mapped" aliases pointing at it"""
    collection = Collection(name=name, type=collection_type)
    session.add(collection)
    await session.flush()

    for raw_value in aliases or [name]:
        session.add(AliasMapping(
            raw_value=raw_value,
            collection_id=collection.id,
            status=MappingStatus.MAPPED,
            observation_count=0,
        ))

    await session.commit()
    return collection


def variant_line(
    variant_id: int,
    sku: str,
    title: str = "6",
    collection: Optional[str] = "Spring 26",
    cad: Optional[str] = "30.00",
    usd: Optional[str] = "24.00",
    msrp_cad: Optional[str] = "60.00",
    msrp_us: Optional[str] = "48.00",
    product_id: int = 77,
    quantity: int = 5,
    color: Optional[str] = '["Black","Pink"]',
) -> Dict:
    """One ProductVariant object as it appears in the bulk result"""
    product = {
        "id": f"gid://shopify/Product/{product_id}",
        "title": "Ribbed Tee",
        "status": "ACTIVE",
        "productType": "Tops",
        "featuredMedia": {"preview": {"image": {"url": f"https://cdn.example.com/{product_id}.jpg"}}},
        "mfFabric": {"value": "100% cotton"},
        "mfOrderEntryDescription": {"value": "Ribbed tee"},
    }
    metafields = {
        "mfOrderEntryCollection": collection,
        "mfCadWsPrice": cad,
        "mfUsdWsPrice": usd,
        "mfMsrpCad": msrp_cad,
        "mfMsrpUs": msrp_us,
        "mfColor": color,
    }
    for alias, value in metafields.items():
        product[alias] = {"value": value} if value is not None else None

    return {
        "id": f"gid://shopify/ProductVariant/{variant_id}",
        "sku": sku,
        "price": cad,
        "inventoryQuantity": quantity,
        "displayName": f"Ribbed Tee - {title}",
        "title": title,
        "product": product,
        "inventoryItem": {
            "id": f"gid://shopify/InventoryItem/{variant_id + 5000}",
            "measurement": {"weight": {"unit": "GRAMS", "value": 120.0}},
        },
    }


def inventory_line(variant_id: int, incoming: int, committed: int, level: int = 1) -> Dict:
    return {
        "id": f"gid://shopify/InventoryLevel/{variant_id}{level}?inventory_item_id={variant_id + 5000}",
        "quantities": [
            {"name": "incoming", "quantity": incoming},
            {"name": "committed", "quantity": committed},
        ],
        "__parentId": f"gid://shopify/ProductVariant/{variant_id}",
    }


def to_jsonl(*objects) -> str:
    return "\n".join(obj if isinstance(obj, str) else json.dumps(obj) for obj in objects) + "\n"


class FakeBulkSource:
    """
    httpx.MockTransport handler speaking the bulk operation protocol.

    statuses are returned by successive status polls; the last one repeats.
    A poll_status_code other than 200 fails every status poll instead.
    """

    def __init__(
        self,
        jsonl: str = "",
        statuses: Optional[List[str]] = None,
        object_count: int = 0,
        error_code: Optional[str] = None,
        user_errors: Optional[List[Dict]] = None,
        submit_status_code: int = 200,
        url: Optional[str] = RESULT_URL,
        poll_status_code: int = 200,
        retry_after: Optional[str] = None,
    ):
        self.jsonl = jsonl
        self.statuses = list(statuses or ["RUNNING", "COMPLETED"])
        self.object_count = object_count
        self.error_code = error_code
        self.user_errors = user_errors or []
        self.submit_status_code = submit_status_code
        self.poll_status_code = poll_status_code
        self.retry_after = retry_after
        self.url = url
        self.requests: List[httpx.Request] = []
        self.polls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "GET":
            return httpx.Response(200, text=self.jsonl)

        body = json.loads(request.content)
        if "bulkOperationRunQuery" in body["query"]:
            if self.submit_status_code != 200:
                return httpx.Response(self.submit_status_code, json={"errors": "denied"})
            operation = None if self.user_errors else {"id": "gid://shopify/BulkOperation/1", "status": "CREATED"}
            return httpx.Response(200, json={"data": {"bulkOperationRunQuery": {
                "bulkOperation": operation,
                "userErrors": self.user_errors,
            }}})

        if self.poll_status_code != 200:
            self.polls += 1
            headers = {"Retry-After": self.retry_after} if self.retry_after else {}
            return httpx.Response(self.poll_status_code, headers=headers, json={"errors": "unavailable"})

        status = self.statuses[min(self.polls, len(self.statuses) - 1)]
        self.polls += 1
        node = {
            "id": "gid://shopify/BulkOperation/1",
            "status": status,
            "errorCode": self.error_code,
            "objectCount": str(self.object_count),
            "url": self.url if status == "COMPLETED" else None,
        }
        return httpx.Response(200, json={"data": {"node": node}})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class FakeClock:
    """Monotonic clock advanced only by the fake sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def make_extractor(source: FakeBulkSource, clock: Optional[FakeClock] = None, **kwargs) -> BulkCatalogExtractor:
    clock = clock or FakeClock()
    options = dict(
        graphql_url=GRAPHQL_URL,
        access_token="shpat_test",
        client=source.client(),
        max_retries=2,
        retry_delay=0.01,
        poll_interval=1.0,
        poll_backoff=2.0,
        poll_max_interval=4.0,
        max_wait=60.0,
        sleep=clock.sleep,
        clock=clock,
    )
    options.update(kwargs)
    return BulkCatalogExtractor(**options)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_jsonl() -> str:
    """Two variants of one product; the first has two inventory levels"""
    return to_jsonl(
        variant_line(1001, "2PC-XY-6", title="6"),
        inventory_line(1001, incoming=6, committed=1, level=1),
        inventory_line(1001, incoming=4, committed=1, level=2),
        variant_line(1002, "XY-4", title="4 / Black"),
        inventory_line(1002, incoming=0, committed=3),
    )
