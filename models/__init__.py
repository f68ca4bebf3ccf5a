"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, column helpers and shared enums
          (SyncTrigger, SyncStatus, MappingStatus, CollectionType)
    raw_catalog: Staged source variants, upserted by source id
    catalog_item: Normalized catalog (SKU) rows
    collection: Canonical collections
    alias_mapping: Learned raw value -> collection mappings and signals
    size_alias: Raw size label -> canonical size for sort ordering
    sync_run: Pipeline execution tracking

Relationships:
    - SyncRun -> RawCatalogRecord (one-to-many, last run that staged the row)
    - SyncRun -> CatalogItem (one-to-many, last run that wrote the row)
    - Collection -> CatalogItem, AliasMapping (one-to-many)

Importing this package registers every table on Base.metadata.
"""

from models.base import Base, SyncTrigger, SyncStatus, MappingStatus, CollectionType
from models.raw_catalog import RawCatalogRecord
from models.catalog_item import CatalogItem
from models.collection import Collection
from models.alias_mapping import AliasMapping
from models.size_alias import SizeAlias
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "SyncTrigger",
    "SyncStatus",
    "MappingStatus",
    "CollectionType",
    "RawCatalogRecord",
    "CatalogItem",
    "Collection",
    "AliasMapping",
    "SizeAlias",
    "SyncRun",
]
