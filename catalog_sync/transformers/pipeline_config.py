"""
Data-driven transform pipeline.

The catalog derivation rules are declared as an ordered list of stages
instead of being hard-coded. Each Stage reads one or more source fields,
applies the operation named by its ``kind`` and writes ``target`` into the
output. A stage may instead return a Rejection, which stops the pipeline
for that record.

Source field namespaces:
    raw.<column>        staged variant column (sku, size, incoming, ...)
    metafield.<key>     product metafield from the staged metadata bag
    item.<field>        output of an earlier stage

Changing the rules means publishing a new PipelineDefinition version; the
version used is snapshotted on every SyncRun.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from catalog_sync.transformers.size_ordering import extract_size
from models.base import CollectionType
import json
import logging
import re

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
PACK_PREFIX = re.compile(r"^(\d+)PC-")


class RejectionReason(str, Enum):
    INVALID_SKU = "invalid_sku"
    MISSING_COLLECTION = "missing_collection"
    EXCLUDED_COLLECTION = "excluded_collection"
    MISSING_PRICE = "missing_price"
    UNRESOLVED_COLLECTION = "unresolved_collection"
    DUPLICATE_SKU = "duplicate_sku"


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    detail: Optional[str] = None


@dataclass(frozen=True)
class Stage:
    """One derivation step: ``kind`` applied to ``source`` fields, stored as ``target``"""
    source: Union[str, Tuple[str, ...]]
    target: str
    kind: str
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def sources(self) -> Tuple[str, ...]:
        if isinstance(self.source, str):
            return (self.source,)
        return tuple(self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": list(self.sources),
            "target": self.target,
            "kind": self.kind,
            "options": dict(self.options),
        }


@dataclass(frozen=True)
class PipelineDefinition:
    version: str
    stages: Tuple[Stage, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "stages": [s.to_dict() for s in self.stages]}


class StageContext:
    """Inputs of one record plus the lookups stages may need"""

    def __init__(
        self,
        raw: Mapping[str, Any],
        metafields: Mapping[str, Any],
        resolver=None,
        excluded_tokens: Sequence[str] = ()
    ):
        self.raw = raw
        self.metafields = metafields or {}
        self.item: Dict[str, Any] = {}
        self.resolver = resolver
        self.excluded_tokens = tuple(excluded_tokens)

    def get(self, path: str) -> Any:
        namespace, _, name = path.partition(".")
        if namespace == "raw":
            return self.raw.get(name)
        if namespace == "metafield":
            return self.metafields.get(name)
        if namespace == "item":
            return self.item.get(name)
        raise ValueError(f"Unknown source namespace in '{path}'")


# ============================================================================
# Value helpers
# ============================================================================

def parse_decimal(value: Any) -> Optional[Decimal]:
    """Decimal for numbers and numeric strings; None for absent or non-numeric"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def pack_multiplier(sku: Optional[str]) -> int:
    """3 for "3PC-ABC123", otherwise 1 (a "0PC-" prefix also counts as 1)"""
    if not sku:
        return 1
    match = PACK_PREFIX.match(sku.strip().upper())
    if not match:
        return 1
    return int(match.group(1)) or 1


def clean_color(value: Any) -> Optional[str]:
    """'["Black","Pink"]' -> "Black, Pink"; other strings lose [ ] and quotes"""
    if value is None:
        return None
    if isinstance(value, list):
        parts = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            parts = decoded
        else:
            cleaned = text.replace("[", "").replace("]", "").replace('"', "").strip()
            return cleaned or None

    joined = ", ".join(str(p).strip() for p in parts if p is not None and str(p).strip())
    return joined or None


def split_collection(value: Any) -> List[str]:
    if value is None:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


# ============================================================================
# Stage handlers
# ============================================================================

def _stage_copy(ctx: StageContext, stage: Stage) -> Any:
    value = ctx.get(stage.sources[0])
    if value is None:
        return stage.options.get("default")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return stage.options.get("default")
    return value


def _stage_sku(ctx: StageContext, stage: Stage) -> Any:
    sku = ctx.get(stage.sources[0])
    sku = sku.strip().upper() if isinstance(sku, str) else ""
    separator = stage.options.get("separator", "-")
    if not sku or separator not in sku:
        return Rejection(RejectionReason.INVALID_SKU, f"sku {sku!r} has no '{separator}' separator")
    return sku


def _stage_pack_multiplier(ctx: StageContext, stage: Stage) -> Any:
    return pack_multiplier(ctx.get(stage.sources[0]))


def _stage_collection_values(ctx: StageContext, stage: Stage) -> Any:
    raw_value = ctx.get(stage.sources[0])
    if raw_value is None or not str(raw_value).strip():
        return Rejection(RejectionReason.MISSING_COLLECTION, "no collection value")

    raw_text = str(raw_value)
    folded = raw_text.casefold()
    for token in ctx.excluded_tokens:
        if token and token.casefold() in folded:
            return Rejection(RejectionReason.EXCLUDED_COLLECTION, f"collection {raw_text!r} contains {token!r}")

    return split_collection(raw_text)


def _stage_price(ctx: StageContext, stage: Stage) -> Any:
    source = stage.sources[0]
    price = parse_decimal(ctx.get(source))
    if price is None:
        return Rejection(RejectionReason.MISSING_PRICE, f"{source.partition('.')[2]} is missing or not numeric")
    return to_cents(price)


def _stage_unit_price(ctx: StageContext, stage: Stage) -> Any:
    price_source, units_source = stage.sources
    price = ctx.get(price_source)
    units = ctx.get(units_source) or 1
    return to_cents(Decimal(price) / Decimal(units))


def _stage_on_route(ctx: StageContext, stage: Stage) -> Any:
    incoming_source, committed_source = stage.sources
    return int(ctx.get(incoming_source) or 0) - int(ctx.get(committed_source) or 0)


def _stage_int(ctx: StageContext, stage: Stage) -> Any:
    value = ctx.get(stage.sources[0])
    if value is None or value == "":
        return stage.options.get("default", 0)
    return int(value)


def _stage_color(ctx: StageContext, stage: Stage) -> Any:
    return clean_color(ctx.get(stage.sources[0]))


def _stage_size(ctx: StageContext, stage: Stage) -> Any:
    return extract_size(ctx.get(stage.sources[0])) or None


def _stage_collection(ctx: StageContext, stage: Stage) -> Any:
    candidates = ctx.get(stage.sources[0]) or []
    collection_id, _ = ctx.resolver.resolve_first(candidates)
    if collection_id is None:
        return Rejection(
            RejectionReason.UNRESOLVED_COLLECTION,
            f"no mapping for {', '.join(repr(c) for c in candidates)}"
        )
    return collection_id


def _stage_pre_order(ctx: StageContext, stage: Stage) -> Any:
    collection_id = ctx.get(stage.sources[0])
    return ctx.resolver.collection_type(collection_id) == CollectionType.PRE_ORDER


StageHandler = Callable[[StageContext, Stage], Any]

STAGE_HANDLERS: Dict[str, StageHandler] = {
    "copy": _stage_copy,
    "sku": _stage_sku,
    "pack_multiplier": _stage_pack_multiplier,
    "collection_values": _stage_collection_values,
    "price": _stage_price,
    "unit_price": _stage_unit_price,
    "on_route": _stage_on_route,
    "int": _stage_int,
    "color": _stage_color,
    "size": _stage_size,
    "collection": _stage_collection,
    "pre_order": _stage_pre_order,
}


def execute_pipeline(definition: PipelineDefinition, ctx: StageContext) -> Union[Dict[str, Any], Rejection]:
    """
    Run every stage in order.

    Returns:
        The output fields, or the first Rejection a stage produced
    """
    for stage in definition.stages:
        handler = STAGE_HANDLERS.get(stage.kind)
        if handler is None:
            raise ValueError(f"Unknown stage kind '{stage.kind}' in pipeline {definition.version}")

        value = handler(ctx, stage)
        if isinstance(value, Rejection):
            return value
        ctx.item[stage.target] = value

    return ctx.item


# Filters run first, in the order the rules are applied: SKU shape,
# collection presence/exclusion, prices, then collection resolution.
DEFAULT_PIPELINE = PipelineDefinition(
    version="1",
    stages=(
        Stage("raw.sku", "sku_id", "sku"),
        Stage("metafield.order_entry_collection", "collection_values", "collection_values"),
        Stage("metafield.cad_ws_price", "price_cad", "price"),
        Stage("metafield.usd_ws_price", "price_usd", "price"),
        Stage("metafield.msrp_cad", "msrp_cad", "price"),
        Stage("metafield.msrp_us", "msrp_usd", "price"),
        Stage("item.collection_values", "collection_id", "collection"),
        Stage("item.collection_id", "is_pre_order", "pre_order"),
        Stage("item.sku_id", "units_per_sku", "pack_multiplier"),
        Stage(("item.price_cad", "item.units_per_sku"), "unit_price_cad", "unit_price"),
        Stage(("item.price_usd", "item.units_per_sku"), "unit_price_usd", "unit_price"),
        Stage(("raw.incoming", "raw.committed"), "on_route", "on_route"),
        Stage("raw.quantity", "quantity", "int"),
        Stage("raw.display_name", "description", "copy"),
        Stage("metafield.order_entry_description", "order_entry_description", "copy"),
        Stage("metafield.fabric", "fabric", "copy"),
        Stage("metafield.color", "color", "color"),
        Stage("raw.size", "size", "size"),
        Stage("raw.image_url", "image_url", "copy"),
        Stage("raw.source_numeric_id", "source_variant_id", "copy"),
        Stage("raw.source_parent_id", "source_product_id", "copy"),
    ),
)
