"""
SchoolStore - a small object store with a unit of work

Entities are pydantic models, contexts track them by snapshot, and named
in-memory stores keep the data for the lifetime of the process.

    from schoolstore import ClassRoster, Member, open_school_context

    async with open_school_context("demo") as context:
        context.rosters.add(ClassRoster(name="6ABIF_6AKIF"))
        await context.commit()
"""

from .config import (
    ApplicationConfig, Environment, configure_logging, get_config, set_config
)
from .entities import ClassRoster, Entity, Member, OwnedCollection
from .exceptions import (
    AmbiguousMatchError, ConcurrencyConflictError, ContextClosedError,
    EntityNotFoundError, InvalidOperationError, InvalidQueryError,
    NotTrackedError, PersistenceError, QueryError, TransactionError
)
from .persistence import (
    EntitySet, PersistenceContext, Query, QueryOperator, SortDirection,
    drop_store, open_store, store_names
)
from .school_context import SchoolContext, create_school_context, open_school_context

__version__ = "0.1.0"

__all__ = [
    "ApplicationConfig", "Environment", "configure_logging", "get_config", "set_config",
    "Entity", "OwnedCollection", "ClassRoster", "Member",
    "PersistenceError", "InvalidOperationError", "ContextClosedError",
    "NotTrackedError", "ConcurrencyConflictError", "TransactionError",
    "QueryError", "EntityNotFoundError", "AmbiguousMatchError", "InvalidQueryError",
    "PersistenceContext", "EntitySet", "Query", "QueryOperator", "SortDirection",
    "open_store", "drop_store", "store_names",
    "SchoolContext", "create_school_context", "open_school_context",
]
