"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from api.dependencies import get_sync_service
from api.middleware import RequestContextMiddleware
from api.routes import aliases, catalog, health, sync, webhooks
from catalog_sync.scheduler import SyncScheduler
from core.config import settings
from core.exceptions import (
    AliasMappingError,
    InvalidRunTransitionError,
    SyncAlreadyRunningError,
    SyncRunNotFoundError,
)
from core.logging import setup_logging
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Catalog Sync API",
    description="Wholesale catalog synchronization: control, observation and catalog retrieval",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = None


# Include routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(webhooks.router)
app.include_router(aliases.router)
app.include_router(catalog.router)


# ============================================================================
# Error mapping
# ============================================================================

def _error_response(status_code: int, exc, **extra) -> JSONResponse:
    content = {"detail": exc.message, "error": exc.to_dict()}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(SyncAlreadyRunningError)
async def sync_already_running_handler(request: Request, exc: SyncAlreadyRunningError):
    return _error_response(status.HTTP_409_CONFLICT, exc, activeRunId=exc.active_run_id)


@app.exception_handler(InvalidRunTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidRunTransitionError):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(SyncRunNotFoundError)
async def run_not_found_handler(request: Request, exc: SyncRunNotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(AliasMappingError)
async def alias_mapping_handler(request: Request, exc: AliasMappingError):
    # AliasNotFoundError and CollectionNotFoundError
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler

    logger.info("Starting Catalog Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if not settings.shopify_configured:
        logger.warning("SHOPIFY_STORE_DOMAIN / SHOPIFY_ACCESS_TOKEN not set - syncs will fail")

    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler = SyncScheduler(get_sync_service())
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Catalog Sync API")
    if scheduler is not None:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Catalog Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": "/sync/status",
            "catalog": "/catalog",
            "aliases": "/aliases/signals",
            "sizeAliases": "/size-aliases",
            "webhook": "/webhooks/catalog-sync"
        }
    }
