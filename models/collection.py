from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from models.base import Base, CollectionType, enum_type, utcnow


class Collection(Base):
    """
    Canonical collection that catalog items belong to.

    Several differently-spelled source values ("Summer 26", "SUMMER26")
    resolve to one Collection through the alias_mappings table.
    """
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False)
    type = Column(enum_type(CollectionType, "collection_type"), nullable=False, default=CollectionType.ATS)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    catalog_items = relationship("CatalogItem", back_populates="collection")
    alias_mappings = relationship("AliasMapping", back_populates="collection")

    __table_args__ = (
        Index("idx_collection_type_sort", "type", "sort_order"),
    )
