"""
School Context

The concrete persistence context for the school model. It exposes typed
collections for rosters and their members:

    async with open_school_context("6ABIF") as context:
        eldest = await context.members.order_by("birth_date").first()
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .entities import ClassRoster, Member
from .persistence.context import EntitySet, PersistenceContext


class SchoolContext(PersistenceContext):
    """Persistence context with roster and member collections"""

    @property
    def rosters(self) -> EntitySet[ClassRoster]:
        return self.set(ClassRoster)

    @property
    def members(self) -> EntitySet[Member]:
        return self.set(Member)


def create_school_context(store_name: str, backend: Optional[str] = None,
                          sensitive_data_logging: Optional[bool] = None) -> SchoolContext:
    """Open a SchoolContext against the named store"""
    return SchoolContext(store_name, backend=backend,
                         sensitive_data_logging=sensitive_data_logging)


@asynccontextmanager
async def open_school_context(store_name: str, backend: Optional[str] = None,
                              sensitive_data_logging: Optional[bool] = None) -> AsyncIterator[SchoolContext]:
    context = create_school_context(store_name, backend, sensitive_data_logging)
    try:
        yield context
    finally:
        context.close()


__all__ = ["SchoolContext", "create_school_context", "open_school_context"]
