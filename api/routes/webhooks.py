"""
Catalog change webhook: starts a webhook-triggered sync
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Optional
from api.dependencies import get_sync_service
from catalog_sync.service import SyncService, run_info
from core.exceptions import SyncAlreadyRunningError
from core.security import verify_webhook_signature
from models.base import SyncTrigger
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/catalog-sync", status_code=status.HTTP_202_ACCEPTED)
async def catalog_sync_webhook(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_topic: Optional[str] = Header(None),
    service: SyncService = Depends(get_sync_service)
):
    """
    Verify the HMAC signature and start a sync.

    A webhook arriving while a run is active is acknowledged with 200 so
    the sender does not retry it.
    """
    body = await request.body()

    if not verify_webhook_signature(body, x_shopify_hmac_sha256):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    logger.info(f"Catalog webhook received (topic={x_shopify_topic})")

    try:
        run = await service.start_sync(SyncTrigger.WEBHOOK)
    except SyncAlreadyRunningError as e:
        logger.info(f"Webhook ignored, sync {e.active_run_id} already running")
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"accepted": False, "message": e.message, "activeRunId": e.active_run_id}
        )

    return {"accepted": True, "run": run_info(run).model_dump(mode="json", by_alias=True)}
