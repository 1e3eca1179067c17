"""
Exceptions

Error hierarchy raised by the persistence context, the query views and the
store backends. Everything derives from PersistenceError so callers can catch
the whole family in one place.
"""

from typing import Optional, Type


class PersistenceError(Exception):
    """Base exception for persistence operations"""
    pass


class InvalidOperationError(PersistenceError):
    """Raised when an entity or context is used in a way it does not allow"""
    pass


class ContextClosedError(InvalidOperationError):
    """Raised when a closed persistence context is used"""
    pass


class NotTrackedError(PersistenceError):
    """Raised when an entity is not known to the persistence context"""

    def __init__(self, entity_type: Type, entity_id: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type.__name__} with id {entity_id} is not tracked by this context"
        )


class ConcurrencyConflictError(PersistenceError):
    """Raised when a record was changed or removed by another writer"""

    def __init__(self, entity_type: Type, entity_id: int,
                 expected_version: int, actual_version: Optional[int]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if actual_version is None:
            detail = "was deleted"
        else:
            detail = f"is at version {actual_version}, expected {expected_version}"
        super().__init__(f"{entity_type.__name__} {entity_id} {detail}")


class TransactionError(PersistenceError):
    """Raised when transaction operations fail"""
    pass


class QueryError(PersistenceError):
    """Base exception for query evaluation errors"""
    pass


class EntityNotFoundError(QueryError):
    """Raised when a query that requires a match returns nothing"""

    def __init__(self, entity_type: Type):
        self.entity_type = entity_type
        super().__init__(f"No {entity_type.__name__} matches the query")


class AmbiguousMatchError(QueryError):
    """Raised when a query that requires exactly one match returns several"""

    def __init__(self, entity_type: Type, count: int):
        self.entity_type = entity_type
        self.count = count
        super().__init__(
            f"Expected a single {entity_type.__name__}, query matched {count}"
        )


class InvalidQueryError(QueryError):
    """Raised when a query is malformed"""
    pass


__all__ = [
    "PersistenceError", "InvalidOperationError", "ContextClosedError",
    "NotTrackedError", "ConcurrencyConflictError", "TransactionError",
    "QueryError", "EntityNotFoundError", "AmbiguousMatchError",
    "InvalidQueryError"
]
