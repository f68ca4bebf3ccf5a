"""
Pydantic schemas for API request/response models

Responses are serialized with camelCase keys (syncInProgress, lastRun, ...)
which is what the operator dashboard polls.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from models.base import SyncStatus, SyncTrigger, MappingStatus
from schemas.catalog import CatalogItemResponse


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Sync Control Schemas
# ============================================================================

class StartSyncRequest(CamelModel):
    """Optional scope filters for a run"""
    product_status: Optional[str] = Field(
        None, description="Only extract products with this status (e.g. ACTIVE); defaults to configuration"
    )
    query: Optional[str] = Field(None, description="Extra source search query ANDed with the status filter")

    @field_validator("product_status")
    @classmethod
    def upper_status(cls, v):
        return v.strip().upper() if v else v


class SyncRunInfo(CamelModel):
    """One sync run as seen by observers"""
    id: str
    trigger: SyncTrigger
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    current_step: Optional[str] = None
    progress_percent: int = 0
    records_processed: int = 0
    records_fetched: int = 0
    records_written: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None
    hook_errors: Optional[List[dict]] = None
    stats: Optional[dict] = None
    cancel_requested: bool = False


class SyncStatusResponse(CamelModel):
    """Control-surface status: is a run active, what happened last"""
    sync_in_progress: bool
    last_run: Optional[SyncRunInfo] = None
    recent_runs: List[SyncRunInfo] = Field(default_factory=list)


class SyncRunAccepted(CamelModel):
    """Response to a start or cancel request"""
    run: SyncRunInfo
    message: str


# ============================================================================
# Alias Administration Schemas
# ============================================================================

class AliasSignal(CamelModel):
    """A raw collection value and its mapping state"""
    id: int
    raw_value: str
    status: MappingStatus
    collection_id: Optional[int] = None
    note: Optional[str] = None
    observation_count: int
    first_seen_at: datetime
    last_seen_at: datetime


class AssignAliasRequest(CamelModel):
    collection_id: int = Field(..., ge=1)


class DeferAliasRequest(CamelModel):
    note: str = Field(..., min_length=1, max_length=500)


class BulkAssignRequest(CamelModel):
    mapping_ids: List[int] = Field(..., min_length=1)
    collection_id: int = Field(..., ge=1)


class BulkAssignResponse(CamelModel):
    updated: int


class SizeAliasItem(CamelModel):
    raw_size: str = Field(..., min_length=1, max_length=100)
    canonical_size: str = Field(..., min_length=1, max_length=100)
    updated_by: Optional[str] = None


class SizeAliasUpsertRequest(CamelModel):
    aliases: List[SizeAliasItem] = Field(..., min_length=1)


# ============================================================================
# Catalog Query Schemas
# ============================================================================

class PaginationMetadata(CamelModel):
    """Pagination information"""
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class CatalogPage(CamelModel):
    """Paginated catalog items"""
    items: List[CatalogItemResponse]
    pagination: PaginationMetadata


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(CamelModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime
    database_connected: bool
    catalog_source_configured: bool
    last_run_status: Optional[SyncStatus] = None
    last_run_completed_at: Optional[datetime] = None

    @classmethod
    def evaluate(
        cls,
        timestamp: datetime,
        database_connected: bool,
        catalog_source_configured: bool,
        last_run_status: Optional[SyncStatus] = None,
        last_run_completed_at: Optional[datetime] = None,
    ) -> "HealthCheckResponse":
        """Derive the overall status from its inputs"""
        if not database_connected:
            status = "unhealthy"
        elif last_run_status in (SyncStatus.FAILED, SyncStatus.TIMEOUT):
            status = "degraded"
        else:
            status = "healthy"

        return cls(
            status=status,
            timestamp=timestamp,
            database_connected=database_connected,
            catalog_source_configured=catalog_source_configured,
            last_run_status=last_run_status,
            last_run_completed_at=last_run_completed_at,
        )
