"""
Sync control endpoints: start, observe and cancel runs
"""

from fastapi import APIRouter, Body, Depends, Query, Request, status
from typing import List, Optional
from api.dependencies import get_sync_service, require_api_key
from catalog_sync.extractors.queries import ExtractionFilter
from catalog_sync.service import SyncService, run_info
from core.config import settings
from models.base import SyncTrigger
from schemas.api import StartSyncRequest, SyncRunAccepted, SyncRunInfo, SyncStatusResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"], dependencies=[Depends(require_api_key)])


@router.post("/runs", response_model=SyncRunAccepted, status_code=status.HTTP_202_ACCEPTED)
async def start_sync(
    request: Request,
    body: Optional[StartSyncRequest] = Body(None),
    service: SyncService = Depends(get_sync_service)
):
    """
    Start a manual catalog sync.

    Returns 202 with the started run; 409 if a run is already active.
    """
    body = body or StartSyncRequest()
    extraction_filter = ExtractionFilter(
        product_status=body.product_status or settings.SYNC_PRODUCT_STATUS,
        query=body.query,
    )

    run = await service.start_sync(SyncTrigger.MANUAL, extraction_filter)

    logger.info(f"[{getattr(request.state, 'request_id', '-')}] Manual sync {run.run_id} started")
    return SyncRunAccepted(run=run_info(run), message="Sync started")


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(service: SyncService = Depends(get_sync_service)):
    """Whether a run is active, plus the latest and recent runs"""
    return await service.status()


@router.get("/runs", response_model=List[SyncRunInfo])
async def list_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of runs, newest first"),
    service: SyncService = Depends(get_sync_service)
):
    return await service.list_runs(limit)


@router.get("/runs/{run_id}", response_model=SyncRunInfo)
async def get_run(run_id: str, service: SyncService = Depends(get_sync_service)):
    return await service.get_run(run_id)


@router.post("/runs/{run_id}/cancel", response_model=SyncRunAccepted, status_code=status.HTTP_202_ACCEPTED)
async def cancel_run(run_id: str, service: SyncService = Depends(get_sync_service)):
    """
    Request cooperative cancellation.

    The run stops at its next batch boundary or poll; 404 for an unknown
    run, 409 if it already finished.
    """
    run = await service.cancel(run_id)
    return SyncRunAccepted(run=run, message="Cancellation requested")
