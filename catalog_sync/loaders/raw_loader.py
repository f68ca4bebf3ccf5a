"""
Stage extracted variants into raw_catalog_records with upsert logic (idempotency)
"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import upsert_insert
from core.exceptions import UpsertError
from models.base import utcnow
from models.raw_catalog import RawCatalogRecord
from schemas.raw import RawVariantRecord
import json
import logging

logger = logging.getLogger(__name__)

# Columns refreshed when a source variant is seen again
_UPDATE_COLUMNS = (
    "source_numeric_id",
    "source_parent_id",
    "inventory_item_id",
    "sku",
    "display_name",
    "size",
    "price",
    "quantity",
    "image_url",
    "weight",
    "weight_unit",
    "product_title",
    "product_status",
    "product_type",
    "incoming",
    "committed",
    "metadata_fields",
    "content_hash",
    "raw_payload",
    "ingested_at",
    "sync_run_id",
)


class RawCatalogLoader:
    """
    Upsert staged variants keyed by source_id.

    Ensures:
    - One row per source variant however often it is extracted
    - A batch is committed whole or not at all
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def load(
        self,
        records: List[RawVariantRecord],
        sync_run_id: Optional[int] = None
    ) -> int:
        """
        Upsert one batch (INSERT ON CONFLICT UPDATE).

        Returns:
            Number of records staged

        Raises:
            UpsertError: The batch was rolled back
        """
        if not records:
            return 0

        ingested_at = utcnow()

        try:
            for record in records:
                payload = record.model_dump(mode="json")
                values = record.model_dump()
                values.update(
                    content_hash=record.content_hash(),
                    raw_payload=json.dumps(payload, sort_keys=True),
                    ingested_at=ingested_at,
                    sync_run_id=sync_run_id,
                )

                stmt = upsert_insert(self.db, RawCatalogRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source_id"],
                    set_={column: stmt.excluded[column] for column in _UPDATE_COLUMNS}
                )
                await self.db.execute(stmt)

            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            raise UpsertError(
                "Failed to stage raw catalog batch",
                context={
                    "table_name": "raw_catalog_records",
                    "batch_size": len(records),
                    "first_source_id": records[0].source_id
                },
                original_exception=e
            )

        logger.debug(f"Staged {len(records)} raw catalog records")
        return len(records)
