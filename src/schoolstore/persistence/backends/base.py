"""
Store Backend Interface

💾 Standard Storage Contract:
The persistence context never touches storage directly. It reads rows and
commits through a StoreBackend, so the in-memory store can be swapped for
another provider without changing the context.

Writes go through a StoreTransaction: the context buffers inserts, updates
and deletes into it, then hands it back to ``commit_transaction`` which
applies everything or nothing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type
import logging
import uuid

from ...exceptions import TransactionError


EntityKey = Tuple[Type, int]


@dataclass(frozen=True)
class StoredRow:
    """A copy of one stored record"""
    entity_id: int
    version: int
    values: Dict[str, Any]


@dataclass
class InsertOperation:
    entity_type: Type
    entity_id: int
    values: Dict[str, Any]


@dataclass
class UpdateOperation:
    entity_type: Type
    entity_id: int
    values: Dict[str, Any]
    expected_version: int


@dataclass
class DeleteOperation:
    entity_type: Type
    entity_id: int
    expected_version: int


@dataclass
class CommitResult:
    """Outcome of a committed transaction"""
    affected: int = 0
    versions: Dict[EntityKey, int] = field(default_factory=dict)
    deleted: List[EntityKey] = field(default_factory=list)


@dataclass
class StoreMetrics:
    """Counters collected by store implementations"""
    commits: int = 0
    failed_commits: int = 0
    conflicts: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    last_commit: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commits": self.commits,
            "failed_commits": self.failed_commits,
            "conflicts": self.conflicts,
            "rows_inserted": self.rows_inserted,
            "rows_updated": self.rows_updated,
            "rows_deleted": self.rows_deleted,
            "last_commit": self.last_commit.isoformat() if self.last_commit else None
        }


class StoreTransaction:
    """
    Buffer of pending writes against one store.

    Identities for inserts are reserved from the store immediately so that
    children can reference a new owner before the commit; reserved
    identities are never handed out again, even if the transaction rolls
    back.
    """

    def __init__(self, store: 'StoreBackend'):
        self.store = store
        self.transaction_id = str(uuid.uuid4())
        self.started_at = datetime.now()
        self.is_active = True
        self.is_committed = False
        self.is_rolled_back = False

        self.inserts: List[InsertOperation] = []
        self.updates: List[UpdateOperation] = []
        self.deletes: List[DeleteOperation] = []

    def _ensure_active(self):
        if not self.is_active:
            raise TransactionError(f"Transaction {self.transaction_id} is not active")

    def insert(self, entity_type: Type, values: Dict[str, Any]) -> int:
        """Buffer a new record and return its reserved identity"""
        self._ensure_active()
        entity_id = self.store.reserve_identity(entity_type)
        self.inserts.append(InsertOperation(entity_type, entity_id, dict(values)))
        return entity_id

    def update(self, entity_type: Type, entity_id: int, values: Dict[str, Any],
               expected_version: int):
        self._ensure_active()
        self.updates.append(UpdateOperation(entity_type, entity_id, dict(values), expected_version))

    def delete(self, entity_type: Type, entity_id: int, expected_version: int):
        self._ensure_active()
        self.deletes.append(DeleteOperation(entity_type, entity_id, expected_version))

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes)


class StoreBackend(ABC):
    """
    Abstract storage provider addressed by name.

    Implementations must return copies from the read methods; callers are
    free to mutate what they get back.
    """

    def __init__(self, name: str):
        self.name = name
        self.metrics = StoreMetrics()
        self.created_at = datetime.now()
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @abstractmethod
    async def load_rows(self, entity_type: Type) -> List[StoredRow]:
        """All rows of a type in store order"""
        pass

    @abstractmethod
    async def load_row(self, entity_type: Type, entity_id: int) -> Optional[StoredRow]:
        """One row by identity, or None"""
        pass

    @abstractmethod
    async def count_rows(self, entity_type: Type) -> int:
        pass

    @abstractmethod
    def reserve_identity(self, entity_type: Type) -> int:
        """Hand out the next surrogate identity for a type"""
        pass

    async def begin_transaction(self) -> StoreTransaction:
        return StoreTransaction(self)

    @abstractmethod
    async def commit_transaction(self, transaction: StoreTransaction) -> CommitResult:
        """Apply a transaction atomically"""
        pass

    async def rollback_transaction(self, transaction: StoreTransaction):
        """Discard a transaction's buffered writes"""
        if not transaction.is_active:
            return
        transaction.is_active = False
        transaction.is_rolled_back = True
        self._logger.debug(f"Rolled back transaction {transaction.transaction_id}")

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


__all__ = [
    "StoredRow", "InsertOperation", "UpdateOperation", "DeleteOperation",
    "CommitResult", "StoreMetrics", "StoreTransaction", "StoreBackend"
]
