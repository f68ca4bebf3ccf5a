from sqlalchemy import Column, String, BigInteger, Integer, Numeric, Float, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, BigIntPK, JSONType, utcnow


class RawCatalogRecord(Base):
    """
    One row per source product variant, exactly as received.

    Purpose:
    - Staging area between extraction and transformation
    - Reprocessing capability (transform can be re-run without re-extracting)
    - Debugging and data lineage

    Design Decisions:
    - Upserted by source_id on every extraction, never partially written
    - Named custom metafields live in a JSON bag so new source fields need
      no migration
    - content_hash lets an upsert skip rows that did not change
    """
    __tablename__ = "raw_catalog_records"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Source identification
    source_id = Column(String(255), nullable=False, unique=True)  # gid://shopify/ProductVariant/N
    source_numeric_id = Column(BigInteger, nullable=True, index=True)
    source_parent_id = Column(String(255), nullable=True, index=True)  # product gid
    inventory_item_id = Column(String(255), nullable=True)

    # Scalar variant attributes
    sku = Column(String(255), nullable=True)
    display_name = Column(String(500), nullable=True)
    size = Column(String(255), nullable=True)  # variant title
    price = Column(Numeric(12, 2), nullable=True)
    quantity = Column(Integer, nullable=True)
    image_url = Column(String(2048), nullable=True)
    weight = Column(Float, nullable=True)
    weight_unit = Column(String(20), nullable=True)

    # Parent product
    product_title = Column(String(500), nullable=True)
    product_status = Column(String(50), nullable=True)
    product_type = Column(String(255), nullable=True)

    # Inventory levels summed across locations
    incoming = Column(Integer, nullable=False, default=0)
    committed = Column(Integer, nullable=False, default=0)

    # Custom metafields: key -> string or number
    metadata_fields = Column(JSONType, nullable=False, default=dict)

    content_hash = Column(String(64), nullable=True)
    raw_payload = Column(Text, nullable=True)

    ingested_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    sync_run_id = Column(BigInteger, ForeignKey("sync_runs.id"), nullable=True, index=True)

    sync_run = relationship("SyncRun", back_populates="raw_records")

    __table_args__ = (
        Index("idx_raw_catalog_sku", "sku"),
    )
