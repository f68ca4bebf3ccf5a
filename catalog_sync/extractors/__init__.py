from catalog_sync.extractors.bulk_extractor import BulkCatalogExtractor, ExtractionStats, parse_gid
from catalog_sync.extractors.queries import ExtractionFilter

__all__ = ["BulkCatalogExtractor", "ExtractionFilter", "ExtractionStats", "parse_gid"]
