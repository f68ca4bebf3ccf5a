from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, MappingStatus, enum_type, utcnow


class AliasMapping(Base):
    """
    Learned mapping from a raw source collection value to a canonical Collection.

    Lifecycle:
    - First sighting of an unknown value inserts an "unmapped" row (a signal)
    - An administrator assigns a collection ("mapped") or postpones it
      ("deferred", with a note)
    - Every sighting bumps observation_count and last_seen_at

    raw_value is the exact source string and is never modified; the unique
    constraint guarantees at most one active mapping per raw value.
    """
    __tablename__ = "alias_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    raw_value = Column(String(1000), nullable=False, unique=True)
    collection_id = Column(Integer, ForeignKey("collections.id"), nullable=True, index=True)
    status = Column(enum_type(MappingStatus, "mapping_status"), nullable=False, default=MappingStatus.UNMAPPED)
    note = Column(String(500), nullable=True)

    observation_count = Column(Integer, nullable=False, default=0)
    first_seen_at = Column(DateTime, nullable=False, default=utcnow)
    last_seen_at = Column(DateTime, nullable=False, default=utcnow)

    collection = relationship("Collection", back_populates="alias_mappings")

    __table_args__ = (
        Index("idx_alias_status_count", "status", "observation_count"),
    )
