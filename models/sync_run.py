from sqlalchemy import Column, String, Integer, Float, Text, DateTime, Boolean, Index, Uuid
from sqlalchemy.orm import relationship
import uuid
from models.base import Base, BigIntPK, JSONType, SyncStatus, SyncTrigger, enum_type, utcnow


class SyncRun(Base):
    """
    Tracks one execution of the catalog sync pipeline.

    Purpose:
    - Audit trail of all runs
    - Progress polling for observers (current_step / progress_percent)
    - Detection of runs orphaned by a crashed worker (no heartbeat within
      the stale window)

    A run is created "started" and becomes terminal (completed, failed,
    timeout, cancelled) exactly once.
    """
    __tablename__ = "sync_runs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    run_id = Column(Uuid(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    trigger = Column(enum_type(SyncTrigger, "sync_trigger"), nullable=False)
    status = Column(enum_type(SyncStatus, "sync_status"), default=SyncStatus.STARTED, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    # advanced by every progress write; staleness is measured from here
    heartbeat_at = Column(DateTime, nullable=False, default=utcnow)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_fetched = Column(Integer, nullable=False, default=0)
    records_written = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)

    # Progress
    current_step = Column(String(50), nullable=True)
    progress_percent = Column(Integer, nullable=False, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)
    hook_errors = Column(JSONType, nullable=True)

    # Rejection reasons and extractor counters
    stats = Column(JSONType, nullable=True)

    # Source operation and configuration snapshot
    operation_id = Column(String(255), nullable=True, index=True)
    filter_snapshot = Column(JSONType, nullable=True)
    backup_table = Column(String(255), nullable=True)

    cancel_requested = Column(Boolean, nullable=False, default=False)

    raw_records = relationship("RawCatalogRecord", back_populates="sync_run")
    catalog_items = relationship("CatalogItem", back_populates="sync_run")

    __table_args__ = (
        Index("idx_sync_run_status_started", "status", "started_at"),
        Index("idx_sync_run_status_heartbeat", "status", "heartbeat_at"),
    )

    @property
    def records_processed(self) -> int:
        return (self.records_written or 0) + (self.records_skipped or 0) + (self.records_failed or 0)
