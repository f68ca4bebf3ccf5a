"""
Catalog transformation: data-driven derivation stages, the transformer
that applies them to staged variants, and size-label ordering.
"""

from catalog_sync.transformers.catalog_transformer import CatalogTransformer, TransformResult
from catalog_sync.transformers.pipeline_config import (
    DEFAULT_PIPELINE,
    PipelineDefinition,
    Rejection,
    RejectionReason,
    Stage,
)
from catalog_sync.transformers.size_ordering import SizeRanker, extract_size, normalize_size, sort_by_size

__all__ = [
    "CatalogTransformer",
    "TransformResult",
    "DEFAULT_PIPELINE",
    "PipelineDefinition",
    "Rejection",
    "RejectionReason",
    "Stage",
    "SizeRanker",
    "extract_size",
    "normalize_size",
    "sort_by_size",
]
