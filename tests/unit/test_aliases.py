"""
Unit tests for collection alias resolution, signals and administration
"""

import pytest
from sqlalchemy import select
from catalog_sync import aliases
from catalog_sync.aliases import AliasResolver, SignalRecorder
from core.exceptions import AliasNotFoundError, CollectionNotFoundError
from models import AliasMapping, CollectionType, MappingStatus
from conftest import seed_collection


async def _mapping(session, raw_value):
    session.expire_all()
    return await session.scalar(select(AliasMapping).where(AliasMapping.raw_value == raw_value))


class TestAliasResolver:

    def test_exact_case_sensitive_lookup(self):
        resolver = AliasResolver({"Spring 26": 1})
        assert resolver.resolve("Spring 26") == 1
        assert resolver.resolve("SPRING 26") is None
        assert resolver.recorder.hits == 1
        assert resolver.recorder.misses == 1

    def test_empty_value_is_not_recorded(self):
        resolver = AliasResolver({})
        assert resolver.resolve("") is None
        assert resolver.recorder.pending() == 0

    def test_first_resolvable_value_wins(self):
        resolver = AliasResolver({"Fall 26": 2, "Core": 3})
        assert resolver.resolve_first(["Unknown", "Fall 26", "Core"]) == (2, "Fall 26")
        assert resolver.resolve_first(["Nope"]) == (None, None)

    def test_collection_type(self):
        resolver = AliasResolver({"Fall 26": 2}, {2: CollectionType.PRE_ORDER})
        assert resolver.collection_type(2) == CollectionType.PRE_ORDER
        assert resolver.collection_type(99) is None

    @pytest.mark.asyncio
    async def test_load_only_mapped_rows(self, db_session):
        collection = await seed_collection(db_session, "Spring 26", aliases=["Spring 26", "SPRING26"])
        db_session.add(AliasMapping(raw_value="Old", status=MappingStatus.DEFERRED, note="later"))
        await db_session.commit()

        resolver = await AliasResolver.load(db_session)

        assert len(resolver) == 2
        assert resolver.resolve("SPRING26") == collection.id
        assert resolver.resolve("Old") is None


class TestSignalRecorder:

    def test_counts_repeated_observations(self):
        recorder = SignalRecorder()
        recorder.record("X", resolved=False)
        recorder.record("X", resolved=False)
        recorder.record("Y", resolved=True)

        observations = recorder.drain()
        assert observations["X"].count == 2
        assert observations["Y"].count == 1
        assert recorder.pending() == 0

    @pytest.mark.asyncio
    async def test_first_signal_inserted_then_incremented(self, db_session):
        recorder = SignalRecorder()
        recorder.record("Mystery Drop", resolved=False)
        assert await recorder.flush(db_session) == 1

        mapping = await _mapping(db_session, "Mystery Drop")
        assert mapping.status == MappingStatus.UNMAPPED
        assert mapping.observation_count == 1
        first_id = mapping.id

        recorder.record("Mystery Drop", resolved=False)
        recorder.record("Mystery Drop", resolved=False)
        await recorder.flush(db_session)

        db_session.expire_all()
        rows = (await db_session.execute(select(AliasMapping))).scalars().all()
        assert len(rows) == 1
        assert rows[0].id == first_id
        assert rows[0].observation_count == 3

    @pytest.mark.asyncio
    async def test_flush_never_changes_status(self, db_session):
        db_session.add(AliasMapping(raw_value="Later", status=MappingStatus.DEFERRED, note="ask buyer"))
        await db_session.commit()

        recorder = SignalRecorder()
        recorder.record("Later", resolved=False)
        await recorder.flush(db_session)

        mapping = await _mapping(db_session, "Later")
        assert mapping.status == MappingStatus.DEFERRED
        assert mapping.note == "ask buyer"
        assert mapping.observation_count == 1

    @pytest.mark.asyncio
    async def test_flush_with_nothing_recorded(self, db_session):
        assert await SignalRecorder().flush(db_session) == 0


class TestAliasAdministration:

    @pytest.mark.asyncio
    async def test_signals_ordered_by_observation_count(self, db_session):
        db_session.add_all([
            AliasMapping(raw_value="Rare", status=MappingStatus.UNMAPPED, observation_count=1),
            AliasMapping(raw_value="Common", status=MappingStatus.UNMAPPED, observation_count=40),
            AliasMapping(raw_value="Parked", status=MappingStatus.DEFERRED, observation_count=99, note="n"),
        ])
        await db_session.commit()

        signals = await aliases.list_signals(db_session)
        assert [s.raw_value for s in signals] == ["Common", "Rare"]

        with_deferred = await aliases.list_signals(db_session, include_deferred=True)
        assert [s.raw_value for s in with_deferred] == ["Parked", "Common", "Rare"]

    @pytest.mark.asyncio
    async def test_assign_defer_unmap(self, db_session):
        collection = await seed_collection(db_session, "Holiday", CollectionType.PRE_ORDER)
        signal = AliasMapping(raw_value="HOLIDAY 26", status=MappingStatus.UNMAPPED, observation_count=3)
        db_session.add(signal)
        await db_session.commit()

        mapped = await aliases.assign_collection(db_session, signal.id, collection.id)
        assert mapped.status == MappingStatus.MAPPED
        assert mapped.collection_id == collection.id

        deferred = await aliases.defer_value(db_session, signal.id, "check with merch")
        assert deferred.status == MappingStatus.DEFERRED
        assert deferred.collection_id is None
        assert deferred.note == "check with merch"

        unmapped = await aliases.unmap_value(db_session, signal.id)
        assert unmapped.status == MappingStatus.UNMAPPED
        assert unmapped.note is None
        assert unmapped.observation_count == 3

    @pytest.mark.asyncio
    async def test_assign_unknown_ids(self, db_session):
        collection = await seed_collection(db_session, "Core")

        with pytest.raises(AliasNotFoundError):
            await aliases.assign_collection(db_session, 12345, collection.id)

        signal = AliasMapping(raw_value="Core 2", status=MappingStatus.UNMAPPED)
        db_session.add(signal)
        await db_session.commit()

        with pytest.raises(CollectionNotFoundError):
            await aliases.assign_collection(db_session, signal.id, 999)

    @pytest.mark.asyncio
    async def test_bulk_assign(self, db_session):
        collection = await seed_collection(db_session, "Core")
        signals = [
            AliasMapping(raw_value=value, status=MappingStatus.UNMAPPED)
            for value in ("core", "CORE ", "Core!")
        ]
        db_session.add_all(signals)
        await db_session.commit()

        updated = await aliases.bulk_assign(db_session, [s.id for s in signals] + [9999], collection.id)
        assert updated == 3

        resolver = await AliasResolver.load(db_session)
        assert resolver.resolve("CORE ") == collection.id
