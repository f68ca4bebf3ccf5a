from catalog_sync.loaders.catalog_loader import CatalogLoader
from catalog_sync.loaders.raw_loader import RawCatalogLoader

__all__ = ["CatalogLoader", "RawCatalogLoader"]
