"""
Pydantic schemas for normalized catalog items with validation
"""

from decimal import Decimal
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CatalogItemCreate(BaseModel):
    """
    Schema for upserting a catalog item.

    Ensures:
    - sku_id is stripped and upper-cased (the catalog's unique key)
    - units_per_sku is at least 1
    """

    model_config = ConfigDict(frozen=True)

    sku_id: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    order_entry_description: Optional[str] = None
    quantity: int = 0
    on_route: int = 0
    size: Optional[str] = None
    color: Optional[str] = None
    fabric: Optional[str] = None

    collection_id: int
    is_pre_order: bool = False

    price_cad: Decimal
    price_usd: Decimal
    msrp_cad: Decimal
    msrp_usd: Decimal

    units_per_sku: int = Field(1, ge=1)
    unit_price_cad: Decimal
    unit_price_usd: Decimal

    source_variant_id: Optional[int] = None
    source_product_id: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("sku_id")
    @classmethod
    def normalize_sku(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("sku_id cannot be empty after stripping")
        return v


class CatalogItemResponse(CatalogItemCreate):
    """Schema for API responses"""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    collection_id: Optional[int] = None
    price_cad: Optional[Decimal] = None
    price_usd: Optional[Decimal] = None
    msrp_cad: Optional[Decimal] = None
    msrp_usd: Optional[Decimal] = None
    unit_price_cad: Optional[Decimal] = None
    unit_price_usd: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime
