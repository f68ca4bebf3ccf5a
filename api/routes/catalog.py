"""
Catalog retrieval endpoints with pagination, filtering and size ordering
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_
from api.dependencies import get_db
from catalog_sync.transformers.size_ordering import SizeRanker
from schemas.api import CatalogPage, PaginationMetadata
from schemas.catalog import CatalogItemResponse
from models.catalog_item import CatalogItem
from typing import List, Optional
import time
import uuid
import math
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/catalog", tags=["Catalog"])

PRODUCT_GID_PREFIX = "gid://shopify/Product/"


@router.get("", response_model=CatalogPage)
async def get_catalog(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=1000, description="Items per page"),
    collection_id: Optional[int] = Query(None, description="Filter by collection"),
    is_pre_order: Optional[bool] = Query(None, description="Filter by pre-order flag"),
    size: Optional[str] = Query(None, description="Filter by size"),
    search: Optional[str] = Query(None, description="Search in SKU and description"),
    db: AsyncSession = Depends(get_db)
):
    """
    Retrieve paginated and filtered catalog items.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    filters = []

    if collection_id is not None:
        filters.append(CatalogItem.collection_id == collection_id)

    if is_pre_order is not None:
        filters.append(CatalogItem.is_pre_order == is_pre_order)

    if size:
        filters.append(CatalogItem.size == size.strip().upper())

    if search:
        filters.append(or_(
            CatalogItem.sku_id.ilike(f"%{search}%"),
            CatalogItem.description.ilike(f"%{search}%")
        ))

    query = select(CatalogItem)
    count_query = select(func.count()).select_from(CatalogItem)
    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total_items = (await db.execute(count_query)).scalar()

    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0
    offset = (page - 1) * page_size

    query = query.order_by(CatalogItem.sku_id).offset(offset).limit(page_size)
    result = await db.execute(query)
    items = [CatalogItemResponse.model_validate(item) for item in result.scalars().all()]

    logger.info(
        f"[{request_id}] Returned {len(items)} catalog items "
        f"({(time.time() - start_time) * 1000:.2f}ms)"
    )

    return CatalogPage(
        items=items,
        pagination=PaginationMetadata(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1
        )
    )


@router.get("/products/{product_id}/variants", response_model=List[CatalogItemResponse])
async def get_product_variants(product_id: str, db: AsyncSession = Depends(get_db)):
    """
    All catalog items of one source product, smallest size first.

    product_id is the product gid or its numeric id.
    """
    source_product_id = f"{PRODUCT_GID_PREFIX}{product_id}" if product_id.isdigit() else product_id

    result = await db.execute(
        select(CatalogItem)
        .where(CatalogItem.source_product_id == source_product_id)
        .order_by(CatalogItem.sku_id)
    )
    variants = result.scalars().all()

    if not variants:
        raise HTTPException(status_code=404, detail=f"No catalog items for product {product_id}")

    ranker = await SizeRanker.load(db)
    return [CatalogItemResponse.model_validate(item) for item in ranker.sort(variants)]
