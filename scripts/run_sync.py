"""
Run one catalog sync from the command line and wait for it to finish

Usage:
    python -m scripts.run_sync
    python -m scripts.run_sync --status DRAFT --query "vendor:Acme"
"""

import argparse
import asyncio
import json
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from catalog_sync.extractors.queries import ExtractionFilter
from catalog_sync.service import SyncService, run_info
from core.config import settings
from core.database import engine
from core.exceptions import SyncAlreadyRunningError
from core.logging import setup_logging
from models.base import SyncStatus, SyncTrigger

logger = logging.getLogger(__name__)


async def run_sync(product_status=None, query=None) -> int:
    """Run a manual sync; returns the process exit code"""
    service = SyncService()
    extraction_filter = ExtractionFilter(
        product_status=product_status or settings.SYNC_PRODUCT_STATUS,
        query=query,
    )

    try:
        run = await service.start_sync(SyncTrigger.MANUAL, extraction_filter, wait=True)
    except SyncAlreadyRunningError as e:
        logger.error(f"Sync not started: run {e.active_run_id} is already active")
        return 2
    finally:
        await engine.dispose()

    info = run_info(run)
    print(json.dumps(info.model_dump(mode="json", by_alias=True), indent=2))

    if run.status != SyncStatus.COMPLETED:
        logger.error(f"Sync {run.run_id} ended with status {run.status.value}: {run.error_message}")
        return 1

    logger.info(
        f"Sync {run.run_id} completed: written={run.records_written}, "
        f"skipped={run.records_skipped}, failed={run.records_failed}"
    )
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run one catalog sync")
    parser.add_argument("--status", dest="product_status", help="Product status filter (default from settings)")
    parser.add_argument("--query", help="Extra search query ANDed with the status filter")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    sys.exit(asyncio.run(run_sync(args.product_status, args.query)))


if __name__ == "__main__":
    main()
