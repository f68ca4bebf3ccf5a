"""
Pydantic schemas for data validation and serialization.

Schemas:
    raw: RawVariantRecord, a parsed bulk-result variant before staging
    catalog: CatalogItemCreate / CatalogItemResponse for the normalized catalog
    api: Control, administrative and health request/response models

Usage:
    from schemas.raw import RawVariantRecord
    from schemas.catalog import CatalogItemCreate
    from schemas.api import SyncStatusResponse

Example:
    item = CatalogItemCreate(
        sku_id="2pc-xy-6",
        collection_id=1,
        price_cad=Decimal("20"), price_usd=Decimal("16"),
        msrp_cad=Decimal("40"), msrp_usd=Decimal("32"),
        units_per_sku=2,
        unit_price_cad=Decimal("10.00"), unit_price_usd=Decimal("8.00"),
    )
    assert item.sku_id == "2PC-XY-6"
"""

__all__ = [
    "RawVariantRecord",
    "CatalogItemCreate",
    "CatalogItemResponse",
    "SyncRunInfo",
    "SyncStatusResponse",
    "AliasSignal",
    "HealthCheckResponse",
]
