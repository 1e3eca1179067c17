"""
Store Backends - Storage Implementation Layer

💾 Pluggable Storage Providers:
Backends are looked up by name, so the persistence context does not depend
on a concrete store. Only the in-memory backend ships with the package;
others can be added with ``register_backend``.
"""

from typing import Callable, Dict, List, Optional

from ...config import get_config
from .base import (
    CommitResult, StoreBackend, StoredRow, StoreMetrics, StoreTransaction
)
from .memory import (
    MemoryStore, drop_memory_store, memory_store_names, open_memory_store
)

BackendFactory = Callable[..., StoreBackend]

_backends: Dict[str, Dict[str, Callable]] = {
    "memory": {
        "open": open_memory_store,
        "drop": drop_memory_store,
        "names": memory_store_names,
    },
}


def register_backend(name: str, open: BackendFactory,
                     drop: Callable[[str], bool], names: Callable[[], List[str]]):
    """Make a storage provider available under a backend name"""
    _backends[name] = {"open": open, "drop": drop, "names": names}


def _resolve(backend: Optional[str]) -> Dict[str, Callable]:
    backend = backend or get_config().persistence.default_backend
    if backend not in _backends:
        raise ValueError(f"Unknown store backend: {backend}")
    return _backends[backend]


def open_store(name: str, backend: Optional[str] = None) -> StoreBackend:
    """Open the named store, creating it on first use"""
    return _resolve(backend)["open"](
        name, identity_seed=get_config().persistence.identity_seed
    )


def drop_store(name: str, backend: Optional[str] = None) -> bool:
    return _resolve(backend)["drop"](name)


def store_names(backend: Optional[str] = None) -> List[str]:
    return _resolve(backend)["names"]()


__all__ = [
    "StoreBackend", "StoreTransaction", "StoredRow", "StoreMetrics",
    "CommitResult", "MemoryStore", "register_backend", "open_store",
    "drop_store", "store_names"
]
