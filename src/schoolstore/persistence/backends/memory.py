"""
Memory Store - Named In-Memory Backend

🧠 Process-Lifetime Storage:
Each MemoryStore holds per-type tables of versioned records. Stores are kept
in a registry keyed by name: opening the same name twice returns the same
store, distinct names never share data. Nothing survives a process restart.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Type
import copy
import logging
import threading

from ...exceptions import ConcurrencyConflictError, TransactionError
from .base import CommitResult, StoreBackend, StoredRow, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass
class MemoryRecord:
    """Record stored in memory with its optimistic-concurrency version"""
    values: Dict[str, Any]
    version: int = 1

    def to_row(self, entity_id: int) -> StoredRow:
        return StoredRow(entity_id, self.version, copy.deepcopy(self.values))


class MemoryStore(StoreBackend):
    """
    In-memory store implementation.

    Features:
    - Per-type tables kept in insertion order
    - Monotonic identity sequences per type, never reused
    - Version check on every update and delete (optimistic concurrency)
    - Cascading delete of owned children
    - Commits serialized by a lock and applied all-or-nothing
    """

    def __init__(self, name: str, identity_seed: int = 1):
        super().__init__(name)
        self.identity_seed = identity_seed

        self._tables: Dict[str, Dict[int, MemoryRecord]] = defaultdict(dict)
        self._entity_classes: Dict[str, Type] = {}
        self._sequences: Dict[str, int] = {}

        self._lock = threading.RLock()

    def _get_entity_type_key(self, entity_type: Type) -> str:
        return f"{entity_type.__module__}.{entity_type.__name__}"

    def _table(self, entity_type: Type) -> Dict[int, MemoryRecord]:
        type_key = self._get_entity_type_key(entity_type)
        self._entity_classes.setdefault(type_key, entity_type)
        return self._tables[type_key]

    # Reads
    async def load_rows(self, entity_type: Type) -> List[StoredRow]:
        with self._lock:
            return [record.to_row(entity_id)
                    for entity_id, record in self._table(entity_type).items()]

    async def load_row(self, entity_type: Type, entity_id: int) -> Optional[StoredRow]:
        with self._lock:
            record = self._table(entity_type).get(entity_id)
            return record.to_row(entity_id) if record else None

    async def count_rows(self, entity_type: Type) -> int:
        with self._lock:
            return len(self._table(entity_type))

    # Writes
    def reserve_identity(self, entity_type: Type) -> int:
        with self._lock:
            type_key = self._get_entity_type_key(entity_type)
            next_id = self._sequences.get(type_key, self.identity_seed)
            self._sequences[type_key] = next_id + 1
            return next_id

    async def commit_transaction(self, transaction: StoreTransaction) -> CommitResult:
        """
        Apply a transaction atomically.

        All expected versions are checked before anything is written, so a
        conflict leaves the store untouched.
        """
        with self._lock:
            if not transaction.is_active:
                raise TransactionError(
                    f"Transaction {transaction.transaction_id} is not active"
                )

            try:
                self._check_versions(transaction)
            except ConcurrencyConflictError:
                self.metrics.conflicts += 1
                self.metrics.failed_commits += 1
                raise

            result = CommitResult()

            for op in transaction.inserts:
                self._table(op.entity_type)[op.entity_id] = MemoryRecord(copy.deepcopy(op.values))
                result.versions[(op.entity_type, op.entity_id)] = 1
                self.metrics.rows_inserted += 1

            for op in transaction.updates:
                record = self._table(op.entity_type)[op.entity_id]
                record.values = copy.deepcopy(op.values)
                record.version += 1
                result.versions[(op.entity_type, op.entity_id)] = record.version
                self.metrics.rows_updated += 1

            removed: Set = set()
            for op in transaction.deletes:
                self._delete_cascading(op.entity_type, op.entity_id, removed, result)

            result.affected = len(transaction.inserts) + len(transaction.updates) + len(result.deleted)

            transaction.is_active = False
            transaction.is_committed = True
            self.metrics.commits += 1
            self.metrics.last_commit = datetime.now()

        self._logger.debug(
            f"Store '{self.name}' committed {transaction.transaction_id}: "
            f"{len(transaction.inserts)} inserted, {len(transaction.updates)} updated, "
            f"{len(result.deleted)} deleted"
        )
        return result

    def _check_versions(self, transaction: StoreTransaction):
        for op in list(transaction.updates) + list(transaction.deletes):
            record = self._table(op.entity_type).get(op.entity_id)
            actual = record.version if record else None
            if actual != op.expected_version:
                raise ConcurrencyConflictError(
                    op.entity_type, op.entity_id, op.expected_version, actual
                )

    def _delete_cascading(self, entity_type: Type, entity_id: int,
                          removed: Set, result: CommitResult):
        key = (entity_type, entity_id)
        if key in removed:
            return
        table = self._table(entity_type)
        if entity_id not in table:
            return

        del table[entity_id]
        removed.add(key)
        result.deleted.append(key)
        self.metrics.rows_deleted += 1

        for relation in getattr(entity_type, "owned_collections", {}).values():
            child_table = self._table(relation.child_type)
            child_ids = [child_id for child_id, record in child_table.items()
                         if record.values.get(relation.foreign_key) == entity_id]
            for child_id in child_ids:
                self._delete_cascading(relation.child_type, child_id, removed, result)

    async def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self.metrics.to_dict(),
                "store_name": self.name,
                "entity_types": len(self._entity_classes),
                "total_entities": sum(len(table) for table in self._tables.values()),
                "entities_by_type": {
                    entity_class.__name__: len(self._tables[type_key])
                    for type_key, entity_class in self._entity_classes.items()
                },
            }


class MemoryStoreRegistry:
    """Process-wide map of store name to MemoryStore"""

    def __init__(self):
        self._stores: Dict[str, MemoryStore] = {}
        self._lock = threading.Lock()

    def open(self, name: str, identity_seed: int = 1) -> MemoryStore:
        """Return the named store, creating it on first use"""
        if not name or not isinstance(name, str):
            raise ValueError("Store name must be a non-empty string")
        with self._lock:
            store = self._stores.get(name)
            if store is None:
                store = MemoryStore(name, identity_seed=identity_seed)
                self._stores[name] = store
                logger.debug(f"Created memory store '{name}'")
            return store

    def drop(self, name: str) -> bool:
        with self._lock:
            return self._stores.pop(name, None) is not None

    def names(self) -> List[str]:
        with self._lock:
            return list(self._stores)


_registry = MemoryStoreRegistry()


def open_memory_store(name: str, identity_seed: int = 1) -> MemoryStore:
    """Open (or create) the named in-memory store"""
    return _registry.open(name, identity_seed=identity_seed)


def drop_memory_store(name: str) -> bool:
    """Forget a named store; returns False if it did not exist"""
    return _registry.drop(name)


def memory_store_names() -> List[str]:
    return _registry.names()


__all__ = [
    "MemoryRecord", "MemoryStore", "MemoryStoreRegistry",
    "open_memory_store", "drop_memory_store", "memory_store_names"
]
