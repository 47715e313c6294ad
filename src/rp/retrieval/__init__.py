"""Curated data source catalog."""

from rp.retrieval.source_catalog import CatalogSource, SourceCatalog

__all__ = ["CatalogSource", "SourceCatalog"]
