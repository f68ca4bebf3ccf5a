"""
Administrative endpoints: collection alias signals and size aliases
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from api.dependencies import get_db, require_api_key
from catalog_sync import aliases
from core.database import upsert_insert
from models.base import utcnow
from models.size_alias import SizeAlias
from schemas.api import (
    AliasSignal,
    AssignAliasRequest,
    BulkAssignRequest,
    BulkAssignResponse,
    DeferAliasRequest,
    SizeAliasItem,
    SizeAliasUpsertRequest,
)
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Aliases"], dependencies=[Depends(require_api_key)])


@router.get("/aliases/signals", response_model=List[AliasSignal])
async def list_alias_signals(
    include_deferred: bool = Query(False, description="Also list deferred values"),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Unresolved collection values, most observed first"""
    return await aliases.list_signals(db, include_deferred=include_deferred, limit=limit)


@router.post("/aliases/bulk-assign", response_model=BulkAssignResponse)
async def bulk_assign_aliases(body: BulkAssignRequest, db: AsyncSession = Depends(get_db)):
    updated = await aliases.bulk_assign(db, body.mapping_ids, body.collection_id)
    return BulkAssignResponse(updated=updated)


@router.post("/aliases/{mapping_id}/assign", response_model=AliasSignal)
async def assign_alias(mapping_id: int, body: AssignAliasRequest, db: AsyncSession = Depends(get_db)):
    return await aliases.assign_collection(db, mapping_id, body.collection_id)


@router.post("/aliases/{mapping_id}/defer", response_model=AliasSignal)
async def defer_alias(mapping_id: int, body: DeferAliasRequest, db: AsyncSession = Depends(get_db)):
    return await aliases.defer_value(db, mapping_id, body.note)


@router.post("/aliases/{mapping_id}/unmap", response_model=AliasSignal)
async def unmap_alias(mapping_id: int, db: AsyncSession = Depends(get_db)):
    return await aliases.unmap_value(db, mapping_id)


# ============================================================================
# Size aliases
# ============================================================================

@router.get("/size-aliases", response_model=List[SizeAliasItem])
async def list_size_aliases(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(SizeAlias).order_by(SizeAlias.canonical_size, SizeAlias.raw_size))
    return result.scalars().all()


@router.put("/size-aliases", response_model=List[SizeAliasItem])
async def upsert_size_aliases(body: SizeAliasUpsertRequest, db: AsyncSession = Depends(get_db)):
    """
    Create or replace size aliases keyed by raw size.

    Sort order picks the change up on the next ranker load.
    """
    now = utcnow()

    for alias in body.aliases:
        stmt = upsert_insert(db, SizeAlias).values(
            raw_size=alias.raw_size.strip(),
            canonical_size=alias.canonical_size.strip(),
            updated_at=now,
            updated_by=alias.updated_by,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["raw_size"],
            set_={
                "canonical_size": stmt.excluded.canonical_size,
                "updated_at": stmt.excluded.updated_at,
                "updated_by": stmt.excluded.updated_by,
            }
        )
        await db.execute(stmt)

    await db.commit()
    logger.info(f"Upserted {len(body.aliases)} size aliases")

    result = await db.execute(select(SizeAlias).order_by(SizeAlias.canonical_size, SizeAlias.raw_size))
    return result.scalars().all()
