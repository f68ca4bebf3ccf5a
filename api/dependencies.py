"""
FastAPI dependencies: database sessions, API key check, sync service
"""

from typing import AsyncGenerator, Optional
from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from catalog_sync.service import SyncService
from core.database import async_session_maker
from core.security import verify_api_key

_sync_service: Optional[SyncService] = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session


async def require_api_key(x_api_key: Optional[str] = Header(None)):
    """Reject requests without the configured X-API-Key"""
    if not verify_api_key(x_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )


def get_sync_service() -> SyncService:
    """Process-wide service; a single instance keeps the start lock shared"""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service
