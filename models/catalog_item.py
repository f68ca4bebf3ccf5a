from sqlalchemy import Column, String, BigInteger, Integer, Numeric, Boolean, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, BigIntPK, utcnow


class CatalogItem(Base):
    """
    Normalized product variant (the "SKU") the order system sells.

    Field Mapping (raw staging -> catalog):
    - sku (upper-cased)                   -> sku_id
    - display_name                        -> description
    - quantity                            -> quantity
    - incoming - committed                -> on_route
    - size (variant title, size part)     -> size
    - metafield color (JSON list)         -> color
    - metafield fabric                    -> fabric
    - metafield order_entry_collection    -> collection_id (via alias table)
    - metafield cad_ws_price / us_ws_price-> price_cad / price_usd
    - metafield msrp_cad / msrp_us        -> msrp_cad / msrp_usd
    - "<N>PC-" sku prefix                 -> units_per_sku
    - price / units_per_sku               -> unit_price_cad / unit_price_usd
    - collection type == pre_order        -> is_pre_order

    Rows are upserted by sku_id and never deleted by the sync pipeline.
    """
    __tablename__ = "catalog_items"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku_id = Column(String(255), nullable=False, unique=True)

    description = Column(String(500), nullable=True)
    order_entry_description = Column(String(500), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    on_route = Column(Integer, nullable=False, default=0)  # may be negative
    size = Column(String(255), nullable=True)
    color = Column(String(255), nullable=True)
    fabric = Column(Text, nullable=True)

    collection_id = Column(Integer, ForeignKey("collections.id"), nullable=True, index=True)
    is_pre_order = Column(Boolean, nullable=False, default=False)

    # Wholesale and retail prices
    price_cad = Column(Numeric(12, 2), nullable=True)
    price_usd = Column(Numeric(12, 2), nullable=True)
    msrp_cad = Column(Numeric(12, 2), nullable=True)
    msrp_usd = Column(Numeric(12, 2), nullable=True)

    # Pack pricing
    units_per_sku = Column(Integer, nullable=False, default=1)
    unit_price_cad = Column(Numeric(12, 2), nullable=True)
    unit_price_usd = Column(Numeric(12, 2), nullable=True)

    # Source lineage
    source_variant_id = Column(BigInteger, nullable=True)
    source_product_id = Column(String(255), nullable=True, index=True)
    image_url = Column(String(2048), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    sync_run_id = Column(BigInteger, ForeignKey("sync_runs.id"), nullable=True, index=True)

    collection = relationship("Collection", back_populates="catalog_items")
    sync_run = relationship("SyncRun", back_populates="catalog_items")

    __table_args__ = (
        Index("idx_catalog_collection_preorder", "collection_id", "is_pre_order"),
    )
