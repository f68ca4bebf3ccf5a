"""
Load catalog items with upsert logic, plus pre-sync backups of the catalog table
"""

from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import upsert_insert
from core.exceptions import BackupError, UpsertError
from models.base import utcnow
from models.catalog_item import CatalogItem
from schemas.catalog import CatalogItemCreate
import logging
import re

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class CatalogLoader:
    """
    Load catalog items with idempotent upsert operations.

    Ensures:
    - No duplicate rows on repeated runs (unique sku_id)
    - Updates existing rows when source data changes
    - Rows are never deleted
    """

    def __init__(self, db_session: AsyncSession, table_name: str = CatalogItem.__tablename__):
        self.db = db_session
        self.table_name = table_name
        self._backup_pattern = re.compile(rf"^{re.escape(table_name)}_backup_(\d{{8}}_\d{{6}})$")

    async def load(
        self,
        items: List[CatalogItemCreate],
        sync_run_id: Optional[int] = None
    ) -> int:
        """
        Upsert one batch (INSERT ON CONFLICT (sku_id) UPDATE).

        Returns:
            Number of records written

        Raises:
            UpsertError: The batch was rolled back
        """
        if not items:
            return 0

        now = utcnow()

        try:
            for item in items:
                item_dict = item.model_dump()
                item_dict.update(sync_run_id=sync_run_id, created_at=now, updated_at=now)

                stmt = upsert_insert(self.db, CatalogItem).values(**item_dict)
                update_columns = [k for k in item_dict if k not in ("sku_id", "created_at")]
                stmt = stmt.on_conflict_do_update(
                    index_elements=["sku_id"],
                    set_={column: stmt.excluded[column] for column in update_columns}
                )
                await self.db.execute(stmt)

            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            raise UpsertError(
                "Failed to upsert catalog batch",
                context={
                    "table_name": self.table_name,
                    "batch_size": len(items),
                    "first_sku": items[0].sku_id
                },
                original_exception=e
            )

        logger.debug(f"Upserted {len(items)} catalog items")
        return len(items)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def backup_table_name(self, at: datetime) -> str:
        return f"{self.table_name}_backup_{at.strftime(BACKUP_TIMESTAMP_FORMAT)}"

    async def backup(self, at: Optional[datetime] = None) -> str:
        """
        Copy the catalog table to <table>_backup_<timestamp>.

        Returns:
            Name of the backup table

        Raises:
            BackupError: The copy could not be created
        """
        backup_name = self.backup_table_name(at or utcnow())

        try:
            await self.db.execute(
                text(f'CREATE TABLE "{backup_name}" AS SELECT * FROM "{self.table_name}"')
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise BackupError(
                f"Failed to back up {self.table_name}",
                context={"table_name": self.table_name, "backup_table": backup_name},
                original_exception=e
            )

        logger.info(f"Created backup table {backup_name}")
        return backup_name

    async def list_backups(self) -> List[str]:
        """Backup tables of this catalog table, oldest first"""
        table_names = await self.db.run_sync(
            lambda sync_session: inspect(sync_session.connection()).get_table_names()
        )
        return sorted(name for name in table_names if self._backup_pattern.match(name))

    async def cleanup_backups(self, retention_days: int, now: Optional[datetime] = None) -> List[str]:
        """
        Drop backup tables older than the retention window.

        Returns:
            Names of the dropped tables
        """
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        dropped = []

        try:
            for name in await self.list_backups():
                taken_at = datetime.strptime(
                    self._backup_pattern.match(name).group(1), BACKUP_TIMESTAMP_FORMAT
                )
                if taken_at < cutoff:
                    await self.db.execute(text(f'DROP TABLE "{name}"'))
                    dropped.append(name)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise BackupError(
                "Failed to clean up old backups",
                context={"table_name": self.table_name, "retention_days": retention_days},
                original_exception=e
            )

        if dropped:
            logger.info(f"Dropped {len(dropped)} backup tables older than {retention_days} days")
        return dropped
