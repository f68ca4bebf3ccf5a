"""
Collection alias resolution and administration.

Source products carry free-text collection values ("Summer 26",
"SUMMER26 Pre-Order", ...). AliasResolver maps each exact value to a
canonical Collection through the alias_mappings table. Values that do not
resolve are recorded as signals (status "unmapped") so an administrator
can assign them later.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import upsert_insert
from core.exceptions import AliasNotFoundError, CollectionNotFoundError, DatabaseError
from models.alias_mapping import AliasMapping
from models.base import CollectionType, MappingStatus, utcnow
from models.collection import Collection
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass
class _Observation:
    count: int
    first_seen_at: datetime
    last_seen_at: datetime


class SignalRecorder:
    """
    Thread-safe accumulator of alias lookups.

    Lookups are counted in memory and written in one pass by flush(), so
    the transform itself never touches the database.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observations: Dict[str, _Observation] = {}
        self.hits = 0
        self.misses = 0

    def record(self, raw_value: str, resolved: bool):
        now = utcnow()
        with self._lock:
            observation = self._observations.get(raw_value)
            if observation is None:
                self._observations[raw_value] = _Observation(1, now, now)
            else:
                observation.count += 1
                observation.last_seen_at = now

            if resolved:
                self.hits += 1
            else:
                self.misses += 1

    def pending(self) -> int:
        with self._lock:
            return len(self._observations)

    def drain(self) -> Dict[str, _Observation]:
        """Take and clear everything recorded so far"""
        with self._lock:
            observations, self._observations = self._observations, {}
        return observations

    async def flush(self, session: AsyncSession) -> int:
        """
        Persist recorded observations with an idempotent upsert.

        New values are inserted as "unmapped" with their count. Existing rows
        (mapped, unmapped or deferred) only get observation_count and
        last_seen_at bumped; status and collection are never touched here.

        Returns:
            Number of distinct raw values written
        """
        observations = self.drain()
        if not observations:
            return 0

        try:
            for raw_value, observation in observations.items():
                stmt = upsert_insert(session, AliasMapping).values(
                    raw_value=raw_value,
                    status=MappingStatus.UNMAPPED,
                    observation_count=observation.count,
                    first_seen_at=observation.first_seen_at,
                    last_seen_at=observation.last_seen_at,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["raw_value"],
                    set_={
                        "observation_count": AliasMapping.observation_count + stmt.excluded.observation_count,
                        "last_seen_at": stmt.excluded.last_seen_at,
                    }
                )
                await session.execute(stmt)

            await session.commit()

        except Exception as e:
            await session.rollback()
            raise DatabaseError(
                "Failed to flush alias signals",
                context={
                    "operation": "UPSERT",
                    "table_name": "alias_mappings",
                    "values": len(observations)
                },
                original_exception=e
            )

        logger.debug(f"Flushed {len(observations)} alias observations")
        return len(observations)


class AliasResolver:
    """
    Exact, case-sensitive lookup of raw collection values.

    Works on a snapshot of the "mapped" rows taken by load(); edits made
    while a run is transforming are picked up by the next run.
    """

    def __init__(
        self,
        mappings: Dict[str, int],
        collection_types: Optional[Dict[int, CollectionType]] = None,
        recorder: Optional[SignalRecorder] = None
    ):
        self._mappings = dict(mappings)
        self._collection_types = dict(collection_types or {})
        self.recorder = recorder or SignalRecorder()

    @classmethod
    async def load(cls, session: AsyncSession, recorder: Optional[SignalRecorder] = None) -> "AliasResolver":
        result = await session.execute(
            select(AliasMapping.raw_value, AliasMapping.collection_id, Collection.type)
            .join(Collection, AliasMapping.collection_id == Collection.id)
            .where(AliasMapping.status == MappingStatus.MAPPED)
        )
        mappings: Dict[str, int] = {}
        collection_types: Dict[int, CollectionType] = {}
        for raw_value, collection_id, collection_type in result.all():
            mappings[raw_value] = collection_id
            collection_types[collection_id] = collection_type

        logger.info(f"Loaded {len(mappings)} collection aliases")
        return cls(mappings, collection_types, recorder)

    def __len__(self) -> int:
        return len(self._mappings)

    def resolve(self, raw_value: Optional[str]) -> Optional[int]:
        """Collection id for the exact raw value, or None. Records the lookup."""
        if not raw_value:
            return None

        collection_id = self._mappings.get(raw_value)
        self.recorder.record(raw_value, resolved=collection_id is not None)
        return collection_id

    def resolve_first(self, raw_values: Iterable[str]) -> Tuple[Optional[int], Optional[str]]:
        """
        Resolve candidates in order and stop at the first hit.

        Returns:
            (collection_id, matched raw value), or (None, None)
        """
        for raw_value in raw_values:
            collection_id = self.resolve(raw_value)
            if collection_id is not None:
                return collection_id, raw_value
        return None, None

    def collection_type(self, collection_id: int) -> Optional[CollectionType]:
        return self._collection_types.get(collection_id)


# ============================================================================
# Administration
# ============================================================================

async def list_signals(
    session: AsyncSession,
    include_deferred: bool = False,
    limit: int = 100
) -> List[AliasMapping]:
    """Unresolved values, most observed first"""
    statuses = [MappingStatus.UNMAPPED]
    if include_deferred:
        statuses.append(MappingStatus.DEFERRED)

    result = await session.execute(
        select(AliasMapping)
        .where(AliasMapping.status.in_(statuses))
        .order_by(AliasMapping.observation_count.desc(), AliasMapping.last_seen_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _get_mapping(session: AsyncSession, mapping_id: int) -> AliasMapping:
    mapping = await session.get(AliasMapping, mapping_id)
    if mapping is None:
        raise AliasNotFoundError(
            f"Alias mapping {mapping_id} not found",
            context={"mapping_id": mapping_id}
        )
    return mapping


async def _require_collection(session: AsyncSession, collection_id: int) -> Collection:
    collection = await session.get(Collection, collection_id)
    if collection is None:
        raise CollectionNotFoundError(
            f"Collection {collection_id} not found",
            context={"collection_id": collection_id}
        )
    return collection


async def assign_collection(session: AsyncSession, mapping_id: int, collection_id: int) -> AliasMapping:
    """Map a raw value to a collection"""
    mapping = await _get_mapping(session, mapping_id)
    await _require_collection(session, collection_id)

    mapping.collection_id = collection_id
    mapping.status = MappingStatus.MAPPED
    mapping.note = None
    await session.commit()
    await session.refresh(mapping)

    logger.info(f"Alias '{mapping.raw_value}' mapped to collection {collection_id}")
    return mapping


async def defer_value(session: AsyncSession, mapping_id: int, note: str) -> AliasMapping:
    """Park a raw value with a note; it stays unresolved"""
    mapping = await _get_mapping(session, mapping_id)

    mapping.status = MappingStatus.DEFERRED
    mapping.collection_id = None
    mapping.note = note
    await session.commit()
    await session.refresh(mapping)

    logger.info(f"Alias '{mapping.raw_value}' deferred: {note}")
    return mapping


async def unmap_value(session: AsyncSession, mapping_id: int) -> AliasMapping:
    """Return a raw value to the unmapped signal list"""
    mapping = await _get_mapping(session, mapping_id)

    mapping.status = MappingStatus.UNMAPPED
    mapping.collection_id = None
    mapping.note = None
    await session.commit()
    await session.refresh(mapping)

    logger.info(f"Alias '{mapping.raw_value}' unmapped")
    return mapping


async def bulk_assign(session: AsyncSession, mapping_ids: List[int], collection_id: int) -> int:
    """Map several raw values to one collection. Unknown ids are ignored."""
    await _require_collection(session, collection_id)

    result = await session.execute(
        update(AliasMapping)
        .where(AliasMapping.id.in_(mapping_ids))
        .values(collection_id=collection_id, status=MappingStatus.MAPPED, note=None)
    )
    await session.commit()

    logger.info(f"Bulk-mapped {result.rowcount} aliases to collection {collection_id}")
    return result.rowcount
