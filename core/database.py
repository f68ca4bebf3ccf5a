"""
Database session management with SQLAlchemy async
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from core.config import settings
import logging

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session


def dialect_name(session: AsyncSession) -> str:
    """Name of the dialect the session is bound to ("postgresql", "sqlite", ...)"""
    return session.get_bind().dialect.name


def upsert_insert(session: AsyncSession, model):
    """
    INSERT construct supporting on_conflict_do_update for the session's dialect.

    PostgreSQL in production, SQLite in the test suite; both expose the
    same on_conflict_do_update(index_elements=..., set_=...) / excluded API.
    """
    if dialect_name(session) == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
