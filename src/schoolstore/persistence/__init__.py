"""
Persistence - Data Storage and Retrieval

💾 Pluggable Storage Backends:
Unit of Work contexts on top of named, swappable stores.

Structure:
- backends/: Storage providers (in-memory) and the StoreBackend contract
- query.py: Filters, sorting and lazy query views
- context.py: The unit of work with identity map and snapshot diffing
"""

from .backends import (
    MemoryStore, StoreBackend, StoreTransaction, drop_store, open_store,
    register_backend, store_names
)
from .context import EntitySet, PersistenceContext
from .query import (
    Query, QueryFilter, QueryOperator, QueryOptions, SortCriteria, SortDirection
)

__all__ = [
    "MemoryStore", "StoreBackend", "StoreTransaction", "open_store",
    "drop_store", "store_names", "register_backend",
    "PersistenceContext", "EntitySet",
    "Query", "QueryFilter", "QueryOperator", "QueryOptions",
    "SortCriteria", "SortDirection"
]
