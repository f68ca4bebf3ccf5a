"""
Health check endpoint with database and last sync run status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db
from catalog_sync.run_tracker import SyncRunTracker
from core.config import settings
from models.base import utcnow
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Whether the catalog source credentials are configured
    - Status of the most recent sync run
    """
    db_connected = False
    last_run_status = None
    last_run_completed_at = None

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    if db_connected:
        try:
            tracker = SyncRunTracker(db)
            latest = await tracker.latest_run()
            if latest is not None:
                last_run_status = tracker.effective_status(latest)
                last_run_completed_at = latest.completed_at
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch latest sync run: {str(e)}")

    return HealthCheckResponse.evaluate(
        timestamp=utcnow(),
        database_connected=db_connected,
        catalog_source_configured=settings.shopify_configured,
        last_run_status=last_run_status,
        last_run_completed_at=last_run_completed_at,
    )
