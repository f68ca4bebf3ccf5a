"""
Create all tables and optionally seed canonical collections

Usage:
    python -m scripts.init_db
    python -m scripts.init_db --collection "Spring 2026:ats" --collection "Fall 2026:pre_order"
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from core.config import settings
from core.logging import setup_logging
# Importing the package registers every table
from models import Base, Collection, CollectionType

logger = logging.getLogger(__name__)


def parse_collection(value: str):
    """'Name:type' -> (name, CollectionType); type defaults to ats"""
    name, _, type_value = value.rpartition(":")
    if not name:
        return value.strip(), CollectionType.ATS
    try:
        return name.strip(), CollectionType(type_value.strip().lower())
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Unknown collection type '{type_value}' (expected one of: "
            f"{', '.join(t.value for t in CollectionType)})"
        )


async def seed_collections(session: AsyncSession, collections) -> int:
    """Insert collections whose name does not exist yet"""
    existing = set((await session.execute(select(Collection.name))).scalars().all())
    added = 0

    for sort_order, (name, collection_type) in enumerate(collections):
        if name in existing:
            logger.info(f"Collection '{name}' already exists, skipping")
            continue
        session.add(Collection(name=name, type=collection_type, sort_order=sort_order))
        added += 1

    await session.commit()
    return added


async def init_database(collections=()):
    logger.info("Connecting to database...")
    engine = create_async_engine(settings.DATABASE_URL, echo=False)

    try:
        async with engine.begin() as conn:
            logger.info("Creating tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully.")

        if collections:
            session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_maker() as session:
                added = await seed_collections(session, collections)
                logger.info(f"Seeded {added} collections")
    finally:
        await engine.dispose()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Initialize the catalog sync database")
    parser.add_argument(
        "--collection",
        action="append",
        default=[],
        type=parse_collection,
        metavar="NAME[:TYPE]",
        help="Canonical collection to create (type: ats or pre_order)"
    )
    args = parser.parse_args(argv)

    setup_logging()
    asyncio.run(init_database(args.collection))


if __name__ == "__main__":
    main()
