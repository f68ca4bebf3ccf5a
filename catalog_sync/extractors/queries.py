"""
GraphQL documents for the catalog bulk operation.

METAFIELDS drives both the bulk query text and the parser, so a metafield
added here is fetched and staged without touching anything else.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

METAFIELD_NAMESPACE = "custom"

# (alias in the query, metafield key at the source, key in metadata_fields)
METAFIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("mfOrderEntryCollection", "order_entry_collection", "order_entry_collection"),
    ("mfOrderEntryDescription", "label_title", "order_entry_description"),
    ("mfFabric", "fabric", "fabric"),
    ("mfColor", "color", "color"),
    ("mfCadWsPrice", "cad_ws_price", "cad_ws_price"),
    ("mfUsdWsPrice", "us_ws_price", "usd_ws_price"),
    ("mfMsrpCad", "msrp_cad", "msrp_cad"),
    ("mfMsrpUs", "msrp_us", "msrp_us"),
)

VARIANT_GID_MARKER = "/ProductVariant/"
INVENTORY_LEVEL_GID_MARKER = "/InventoryLevel/"
INVENTORY_QUANTITY_NAMES = ("incoming", "committed")


@dataclass(frozen=True)
class ExtractionFilter:
    """Scope of one extraction; snapshotted on the SyncRun"""
    product_status: Optional[str] = "ACTIVE"
    query: Optional[str] = None

    def search_query(self) -> Optional[str]:
        terms = []
        if self.product_status:
            terms.append(f"product_status:{self.product_status.lower()}")
        if self.query:
            terms.append(f"({self.query})")
        return " AND ".join(terms) or None

    def to_dict(self) -> dict:
        return {"product_status": self.product_status, "query": self.query}


def _metafield_selection(indent: str) -> str:
    return "\n".join(
        f'{indent}{alias}: metafield(namespace: "{METAFIELD_NAMESPACE}", key: "{key}") {{ value }}'
        for alias, key, _ in METAFIELDS
    )


def build_variants_query(extraction_filter: ExtractionFilter) -> str:
    """Inner query submitted to bulkOperationRunQuery"""
    search = extraction_filter.search_query()
    arguments = f'(query: "{_escape(search)}")' if search else ""
    return f"""
{{
  productVariants{arguments} {{
    edges {{
      node {{
        id
        sku
        price
        inventoryQuantity
        displayName
        title
        image {{ url }}
        product {{
          id
          title
          status
          productType
          featuredMedia {{ preview {{ image {{ url }} }} }}
{_metafield_selection("          ")}
        }}
        inventoryItem {{
          id
          measurement {{ weight {{ unit value }} }}
          inventoryLevels(first: 10) {{
            edges {{
              node {{
                id
                quantities(names: ["incoming", "committed"]) {{ name quantity }}
              }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
""".strip()


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


BULK_RUN_MUTATION = """
mutation bulkOperationRunQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
""".strip()

BULK_STATUS_QUERY = """
query bulkOperationStatus($id: ID!) {
  node(id: $id) {
    ... on BulkOperation { id status errorCode objectCount url }
  }
}
""".strip()
