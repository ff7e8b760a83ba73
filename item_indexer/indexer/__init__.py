"""
Indexer package for the item indexer.

This package provides:
- Buffered bulk writes with a worker pool and size/interval flushing
- Strict index mappings
- Search client creation and index provisioning
"""

from .bulk import BulkIndexer, BulkIndexerItem, BulkIndexerStats
from .schema import build_index_config, build_mappings
from .search_client import (
    build_client,
    create_search_client,
    ensure_index,
    search_health_check,
)

__all__ = [
    "BulkIndexer",
    "BulkIndexerItem",
    "BulkIndexerStats",
    "build_index_config",
    "build_mappings",
    "build_client",
    "create_search_client",
    "ensure_index",
    "search_health_check",
]
