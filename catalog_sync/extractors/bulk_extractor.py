"""
Catalog extractor using the source's bulk query API.

Protocol:
1. Submit bulkOperationRunQuery with the variant query
2. Poll the operation until it is COMPLETED, with a backoff bounded by a
   deadline
3. Stream the JSONL result line by line; a ProductVariant line is
   followed by its InventoryLevel child lines (carrying __parentId)

This module provides robust extraction with:
- Exponential backoff retry logic for transient HTTP failures
- Rate limiting protection (Retry-After)
- Per-line recovery: malformed lines are logged, skipped and counted
"""

import httpx
import asyncio
import json
import re
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional
from pydantic import ValidationError
from catalog_sync.extractors.queries import (
    BULK_RUN_MUTATION,
    BULK_STATUS_QUERY,
    INVENTORY_QUANTITY_NAMES,
    METAFIELDS,
    VARIANT_GID_MARKER,
    ExtractionFilter,
    build_variants_query,
)
from core.config import settings
from core.exceptions import (
    APIExtractionError,
    AuthenticationError,
    BulkOperationError,
    ExtractionTimeoutError,
    MalformedRecordError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
    SyncCancelledError,
)
from schemas.raw import RawVariantRecord
import logging

logger = logging.getLogger(__name__)

_GID_NUMBER = re.compile(r"/(\d+)$")

COMPLETED = "COMPLETED"
TERMINAL_FAILURES = ("FAILED", "CANCELED", "EXPIRED")

CancelCheck = Callable[[], Awaitable[bool]]


def parse_gid(gid: Optional[str]) -> Optional[int]:
    """gid://shopify/ProductVariant/123 -> 123"""
    if not gid:
        return None
    match = _GID_NUMBER.search(str(gid))
    return int(match.group(1)) if match else None


@dataclass
class ExtractionStats:
    operation_id: Optional[str] = None
    object_count: int = 0
    lines_read: int = 0
    variants: int = 0
    inventory_levels: int = 0
    ignored_lines: int = 0
    malformed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BulkCatalogExtractor:
    """
    Extract the product-variant catalog through one bulk operation.

    Every call to extract() submits a new operation and returns a lazy,
    non-restartable async iterator of RawVariantRecord.

    Attributes:
        max_retries: Maximum attempts per HTTP call (default: settings.MAX_RETRIES)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        poll_interval: First wait between status polls
        poll_backoff: Multiplier applied to the wait after each poll
        poll_max_interval: Upper bound of a single wait
        max_wait: Polling deadline in seconds
    """

    def __init__(
        self,
        graphql_url: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_backoff: Optional[float] = None,
        poll_max_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        if graphql_url is None and settings.shopify_configured:
            graphql_url = settings.graphql_url
        self.graphql_url = graphql_url
        self.access_token = access_token or settings.SHOPIFY_ACCESS_TOKEN
        self._client = client
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = retry_delay
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.SYNC_POLL_INTERVAL_SECONDS
        self.poll_backoff = poll_backoff or settings.SYNC_POLL_BACKOFF
        self.poll_max_interval = poll_max_interval or settings.SYNC_POLL_MAX_INTERVAL_SECONDS
        self.max_wait = max_wait if max_wait is not None else settings.SYNC_MAX_WAIT_SECONDS
        self._sleep = sleep
        self._clock = clock
        self.stats = ExtractionStats()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token or "",
            "Content-Type": "application/json",
        }

    @asynccontextmanager
    async def _http(self):
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> httpx.Response:
        """
        POST with retry logic and exponential backoff.

        With a deadline (clock time), no retry wait runs past it.

        Raises:
            ExtractionTimeoutError: Deadline reached while retrying
            AuthenticationError: HTTP 401/403, not retried
            ResourceNotFoundError: HTTP 404, not retried
            RateLimitError: HTTP 429 on the last attempt
            NetworkError: 5xx, timeouts or transport errors after max retries
        """
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await client.post(url, headers=self.headers, json=payload, timeout=self.timeout)

                if response.status_code in (401, 403):
                    raise AuthenticationError(
                        f"Authentication failed for {url}",
                        context={"status_code": response.status_code, "api_url": url}
                    )

                if response.status_code == 404:
                    raise ResourceNotFoundError(
                        f"Resource not found: {url}",
                        context={"status_code": 404, "api_url": url}
                    )

                if response.status_code == 429:
                    retry_after = _retry_after(response, delay)
                    if last_attempt:
                        raise RateLimitError(
                            f"Rate limit exceeded for {url}",
                            context={"status_code": 429, "api_url": url, "retry_count": attempt + 1},
                            retry_after=retry_after
                        )
                    logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                    await self._backoff(retry_after, deadline, url)
                    continue

                if response.status_code >= 500:
                    if last_attempt:
                        raise NetworkError(
                            f"Server error after {self.max_retries} retries",
                            context={
                                "status_code": response.status_code,
                                "api_url": url,
                                "retry_count": attempt + 1,
                                "response_body": response.text[:500]
                            }
                        )
                    logger.warning(
                        f"Server error {response.status_code}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await self._backoff(delay, deadline, url)
                    continue

                response.raise_for_status()
                return response

            except APIExtractionError:
                raise

            except httpx.TimeoutException as e:
                if last_attempt:
                    raise NetworkError(
                        f"Request timeout after {self.max_retries} retries",
                        context={"api_url": url, "timeout": self.timeout, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"Request timeout. Retrying in {delay} seconds")
                await self._backoff(delay, deadline, url)

            except httpx.TransportError as e:
                if last_attempt:
                    raise NetworkError(
                        f"Network error after {self.max_retries} retries",
                        context={"api_url": url, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"Network error. Retrying in {delay} seconds")
                await self._backoff(delay, deadline, url)

            except httpx.HTTPStatusError as e:
                raise APIExtractionError(
                    f"Unexpected HTTP status {e.response.status_code} from {url}",
                    context={"status_code": e.response.status_code, "api_url": url},
                    original_exception=e
                )

        raise APIExtractionError(
            "Max retries exceeded",
            context={"api_url": url, "retry_count": self.max_retries}
        )

    async def _backoff(self, delay: float, deadline: Optional[float], url: str):
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ExtractionTimeoutError(
                    f"Deadline reached while retrying {url}",
                    context={"api_url": url, "max_wait": self.max_wait}
                )
            delay = min(delay, remaining)
        await self._sleep(delay)

    async def _graphql(
        self,
        client: httpx.AsyncClient,
        query: str,
        variables: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> Dict[str, Any]:
        response = await self._make_request_with_retry(
            client, self.graphql_url, {"query": query, "variables": variables}, deadline
        )

        try:
            body = response.json()
        except ValueError as e:
            raise APIExtractionError(
                "Failed to parse JSON response",
                context={"api_url": self.graphql_url, "response_body": response.text[:500]},
                original_exception=e
            )

        if body.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise BulkOperationError(
                f"GraphQL errors: {messages}",
                context={"api_url": self.graphql_url, "errors": body["errors"]}
            )

        return body.get("data") or {}

    # ------------------------------------------------------------------
    # Bulk operation protocol
    # ------------------------------------------------------------------

    async def submit(self, client: httpx.AsyncClient, extraction_filter: ExtractionFilter) -> str:
        """Start the bulk operation; returns its id"""
        data = await self._graphql(
            client, BULK_RUN_MUTATION, {"query": build_variants_query(extraction_filter)}
        )
        result = data.get("bulkOperationRunQuery") or {}

        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = "; ".join(str(err.get("message")) for err in user_errors)
            raise BulkOperationError(
                f"Bulk operation rejected: {messages}",
                context={"user_errors": user_errors, "filter": extraction_filter.to_dict()}
            )

        operation = result.get("bulkOperation") or {}
        operation_id = operation.get("id")
        if not operation_id:
            raise BulkOperationError(
                "Bulk operation was not created",
                context={"response": result}
            )

        self.stats.operation_id = operation_id
        logger.info(f"Submitted bulk operation {operation_id}")
        return operation_id

    async def wait_for_completion(
        self,
        client: httpx.AsyncClient,
        operation_id: str,
        cancel_check: Optional[CancelCheck] = None
    ) -> Optional[str]:
        """
        Poll until the operation completes.

        The wait starts at poll_interval and grows by poll_backoff up to
        poll_max_interval; no sleep, including retry waits after HTTP
        errors, extends past the deadline.

        Returns:
            Result file URL, or None when the operation matched nothing

        Raises:
            BulkOperationError: FAILED, CANCELED or EXPIRED at the source
            ExtractionTimeoutError: Deadline passed while still running
            SyncCancelledError: cancel_check reported a cancellation
        """
        deadline = self._clock() + self.max_wait
        interval = self.poll_interval
        polls = 0

        while True:
            if cancel_check is not None and await cancel_check():
                raise SyncCancelledError(
                    "Cancelled while waiting for bulk operation",
                    context={"operation_id": operation_id}
                )

            data = await self._graphql(client, BULK_STATUS_QUERY, {"id": operation_id}, deadline)
            node = data.get("node")
            polls += 1

            if not node:
                raise BulkOperationError(
                    f"Bulk operation {operation_id} not found",
                    context={"operation_id": operation_id}
                )

            status = node.get("status")
            logger.debug(f"Bulk operation {operation_id} status={status} (poll {polls})")

            if status == COMPLETED:
                self.stats.object_count = int(node.get("objectCount") or 0)
                logger.info(
                    f"Bulk operation {operation_id} completed with "
                    f"{self.stats.object_count} objects after {polls} polls"
                )
                return node.get("url")

            if status in TERMINAL_FAILURES:
                raise BulkOperationError(
                    f"Bulk operation {operation_id} ended with status {status}",
                    context={
                        "operation_id": operation_id,
                        "status": status,
                        "error_code": node.get("errorCode")
                    }
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ExtractionTimeoutError(
                    f"Bulk operation {operation_id} still {status} after {self.max_wait} seconds",
                    context={"operation_id": operation_id, "status": status, "polls": polls}
                )

            await self._sleep(min(interval, remaining))
            interval = min(interval * self.poll_backoff, self.poll_max_interval)

    async def stream_records(self, client: httpx.AsyncClient, url: str) -> AsyncIterator[RawVariantRecord]:
        """Download the JSONL result and yield one record per variant"""
        try:
            async with client.stream("GET", url, timeout=self.timeout) as response:
                if response.status_code >= 400:
                    raise APIExtractionError(
                        f"Failed to download bulk result: HTTP {response.status_code}",
                        context={"status_code": response.status_code, "operation_id": self.stats.operation_id}
                    )

                pending: Optional[RawVariantRecord] = None
                line_number = 0

                async for line in response.aiter_lines():
                    line_number += 1
                    if not line.strip():
                        continue
                    self.stats.lines_read += 1

                    try:
                        obj = _load_line(line, line_number)
                        gid = str(obj.get("id") or "")
                        parent_id = obj.get("__parentId")

                        if parent_id is None and VARIANT_GID_MARKER in gid:
                            if pending is not None:
                                yield pending
                                pending = None
                            pending = parse_variant(obj, line_number)
                            self.stats.variants += 1

                        elif parent_id is not None:
                            if pending is None or parent_id not in (pending.source_id, pending.inventory_item_id):
                                raise MalformedRecordError(
                                    "Child line does not follow its parent variant",
                                    context={"line_number": line_number, "parent_id": parent_id}
                                )
                            _apply_inventory_level(pending, obj)
                            self.stats.inventory_levels += 1

                        else:
                            self.stats.ignored_lines += 1

                    except MalformedRecordError as e:
                        self.stats.malformed += 1
                        logger.warning(
                            f"Skipping malformed bulk line {line_number}: {e.message}",
                            extra={"error_context": e.to_dict()}
                        )

                if pending is not None:
                    yield pending

        except httpx.TransportError as e:
            raise NetworkError(
                "Network error while streaming bulk result",
                context={"operation_id": self.stats.operation_id},
                original_exception=e
            )

    async def extract(
        self,
        extraction_filter: Optional[ExtractionFilter] = None,
        cancel_check: Optional[CancelCheck] = None
    ) -> AsyncIterator[RawVariantRecord]:
        """
        Submit, poll and stream one bulk operation.

        Raises:
            APIExtractionError: Source is not configured or HTTP failed
            BulkOperationError: Source rejected or failed the operation
            ExtractionTimeoutError: Polling deadline exceeded
        """
        if not self.graphql_url:
            raise APIExtractionError(
                "Catalog source is not configured",
                context={"setting": "SHOPIFY_STORE_DOMAIN / SHOPIFY_ACCESS_TOKEN"}
            )

        extraction_filter = extraction_filter or ExtractionFilter(product_status=settings.SYNC_PRODUCT_STATUS)
        self.stats = ExtractionStats()

        async with self._http() as client:
            operation_id = await self.submit(client, extraction_filter)
            url = await self.wait_for_completion(client, operation_id, cancel_check)

            if not url:
                logger.info(f"Bulk operation {operation_id} returned no result file")
                return

            async for record in self.stream_records(client, url):
                yield record

        logger.info(f"Extraction finished: {self.stats.to_dict()}")


# ============================================================================
# JSONL parsing
# ============================================================================

def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def _load_line(line: str, line_number: int) -> Dict[str, Any]:
    try:
        obj = json.loads(line)
    except ValueError as e:
        raise MalformedRecordError(
            "Invalid JSON",
            context={"line_number": line_number, "reason": str(e)},
            original_exception=e
        )
    if not isinstance(obj, dict):
        raise MalformedRecordError(
            "Line is not a JSON object",
            context={"line_number": line_number}
        )
    return obj


def _nested(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def parse_variant(obj: Dict[str, Any], line_number: int = 0) -> RawVariantRecord:
    """Build a staged record from a ProductVariant line"""
    product = obj.get("product") or {}
    inventory_item = obj.get("inventoryItem") or {}
    weight = _nested(inventory_item, "measurement", "weight") or {}

    metadata_fields = {}
    for alias, _, name in METAFIELDS:
        value = _nested(product, alias, "value")
        if value is not None:
            metadata_fields[name] = value

    image_url = _nested(product, "featuredMedia", "preview", "image", "url") or _nested(obj, "image", "url")

    try:
        return RawVariantRecord(
            source_id=obj.get("id"),
            source_numeric_id=parse_gid(obj.get("id")),
            source_parent_id=product.get("id"),
            inventory_item_id=inventory_item.get("id"),
            sku=obj.get("sku"),
            display_name=obj.get("displayName"),
            size=obj.get("title"),
            price=obj.get("price"),
            quantity=obj.get("inventoryQuantity"),
            image_url=image_url,
            weight=weight.get("value"),
            weight_unit=weight.get("unit"),
            product_title=product.get("title"),
            product_status=product.get("status"),
            product_type=product.get("productType"),
            metadata_fields=metadata_fields,
        )
    except ValidationError as e:
        raise MalformedRecordError(
            "Variant line failed validation",
            context={"line_number": line_number, "source_id": obj.get("id"), "reason": str(e)},
            original_exception=e
        )


def _apply_inventory_level(record: RawVariantRecord, obj: Dict[str, Any]):
    """Add a level's incoming/committed quantities to its variant (summed across locations)"""
    try:
        for quantity in obj.get("quantities") or []:
            name = quantity.get("name")
            if name in INVENTORY_QUANTITY_NAMES:
                amount = int(quantity.get("quantity") or 0)
                setattr(record, name, getattr(record, name) + amount)
    except (AttributeError, TypeError, ValueError) as e:
        raise MalformedRecordError(
            "Invalid inventory level quantities",
            context={"source_id": record.source_id, "level_id": obj.get("id")},
            original_exception=e
        )
