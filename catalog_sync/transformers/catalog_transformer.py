"""
Transform staged variants into catalog items
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence
from pydantic import BaseModel
from catalog_sync.aliases import AliasResolver
from catalog_sync.transformers.pipeline_config import (
    DEFAULT_PIPELINE,
    PipelineDefinition,
    Rejection,
    RejectionReason,
    StageContext,
    execute_pipeline,
)
from core.config import settings
from schemas.catalog import CatalogItemCreate
import logging

logger = logging.getLogger(__name__)

RAW_FIELDS = (
    "source_id",
    "source_numeric_id",
    "source_parent_id",
    "sku",
    "display_name",
    "size",
    "price",
    "quantity",
    "image_url",
    "product_title",
    "product_status",
    "product_type",
    "incoming",
    "committed",
    "metadata_fields",
)

_ITEM_FIELDS = tuple(CatalogItemCreate.model_fields)


@dataclass(frozen=True)
class TransformResult:
    """Outcome of one transform: an item, or the reason it was rejected"""
    item: Optional[CatalogItemCreate] = None
    rejection: Optional[Rejection] = None

    @classmethod
    def accepted(cls, item: CatalogItemCreate) -> "TransformResult":
        return cls(item=item)

    @classmethod
    def rejected(cls, reason: RejectionReason, detail: Optional[str] = None) -> "TransformResult":
        return cls(rejection=Rejection(reason, detail))

    @property
    def ok(self) -> bool:
        return self.item is not None

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.rejection.reason if self.rejection else None


def _raw_fields(raw: Any) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    return {name: getattr(raw, name, None) for name in RAW_FIELDS}


class CatalogTransformer:
    """
    Apply the catalog business rules to staged variants.

    Pure with respect to the database: collection lookups go through the
    resolver's in-memory snapshot, so the same raw input and snapshot
    always give the same result.
    """

    def __init__(
        self,
        resolver: AliasResolver,
        pipeline: PipelineDefinition = DEFAULT_PIPELINE,
        excluded_tokens: Optional[Sequence[str]] = None
    ):
        self.resolver = resolver
        self.pipeline = pipeline
        self.excluded_tokens = tuple(
            settings.SYNC_EXCLUDED_COLLECTION_TOKENS if excluded_tokens is None else excluded_tokens
        )

    def transform(self, raw: Any) -> TransformResult:
        """
        Transform one staged variant (ORM row, RawVariantRecord or dict).

        Raises:
            pydantic.ValidationError: If the derived fields do not form a
                valid catalog item
        """
        fields = _raw_fields(raw)
        ctx = StageContext(
            raw=fields,
            metafields=fields.get("metadata_fields") or {},
            resolver=self.resolver,
            excluded_tokens=self.excluded_tokens,
        )

        output = execute_pipeline(self.pipeline, ctx)
        if isinstance(output, Rejection):
            logger.debug(f"Rejected {fields.get('source_id')}: {output.reason.value} ({output.detail})")
            return TransformResult(rejection=output)

        item_fields: Dict[str, Any] = {k: v for k, v in output.items() if k in _ITEM_FIELDS}
        return TransformResult.accepted(CatalogItemCreate(**item_fields))
