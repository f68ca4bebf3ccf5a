"""
Pydantic schema for one staged source variant
"""

import hashlib
import json
from decimal import Decimal
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator

MetadataValue = Union[str, int, float, None]


class RawVariantRecord(BaseModel):
    """
    A source product variant as parsed from one bulk-result JSONL line
    (plus its inventory-level child lines).

    Validation is deliberately shallow: staging keeps what the source sent.
    Only the identifiers are required.
    """

    source_id: str = Field(..., min_length=1, max_length=255)
    source_numeric_id: Optional[int] = None
    source_parent_id: Optional[str] = None
    inventory_item_id: Optional[str] = None

    sku: Optional[str] = None
    display_name: Optional[str] = None
    size: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: int = 0
    image_url: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None

    product_title: Optional[str] = None
    product_status: Optional[str] = None
    product_type: Optional[str] = None

    incoming: int = 0
    committed: int = 0

    metadata_fields: Dict[str, MetadataValue] = Field(default_factory=dict)

    @field_validator("sku", "display_name", "size", mode="before")
    @classmethod
    def empty_string_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, v):
        return 0 if v is None else v

    def content_hash(self) -> str:
        """SHA-256 over the canonical JSON form, used to detect unchanged rows"""
        payload = self.model_dump(mode="json")
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
