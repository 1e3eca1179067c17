"""
Query Model - Filters, Sorting and Lazy Query Views

🔎 Restartable Queries:
A Query describes WHAT to fetch (filters, ordering, paging) and is evaluated
only when a terminal operation runs. Every terminal call re-reads the store,
so the same Query object observes commits made between calls:

    pupils = context.members.order_by("last_name")
    first = await pupils.first()
    context.remove(first)
    await context.commit()
    second = await pupils.first()   # re-evaluated, sees the deletion

Builder methods never mutate; they return a new Query.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    Any, AsyncIterator, Callable, Generic, List, Optional, Protocol, Sequence,
    Tuple, Type, TypeVar, Union
)

from ..exceptions import AmbiguousMatchError, EntityNotFoundError, InvalidQueryError

EntityType = TypeVar('EntityType')

Predicate = Callable[[Any], bool]


class QueryOperator(Enum):
    """Query operators for filtering"""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class SortDirection(Enum):
    """Sort direction for ordering"""
    ASC = "asc"
    DESC = "desc"


_VALUELESS_OPERATORS = (QueryOperator.IS_NULL, QueryOperator.IS_NOT_NULL)


@dataclass(frozen=True)
class QueryFilter:
    """Represents a single filter condition"""
    field: str
    operator: QueryOperator
    value: Any = None

    def __post_init__(self):
        if not isinstance(self.operator, QueryOperator):
            try:
                object.__setattr__(self, "operator", QueryOperator(self.operator))
            except ValueError:
                raise InvalidQueryError(f"Unknown operator: {self.operator!r}") from None
        if self.operator in _VALUELESS_OPERATORS:
            object.__setattr__(self, "value", None)
        elif self.value is None:
            raise InvalidQueryError(f"Value required for operator {self.operator}")

    def matches(self, entity: Any) -> bool:
        """Evaluate this condition against an entity"""
        if not hasattr(entity, self.field):
            raise InvalidQueryError(
                f"{entity.__class__.__name__} has no field '{self.field}'"
            )
        actual = getattr(entity, self.field)
        op = self.operator

        if op == QueryOperator.IS_NULL:
            return actual is None
        if op == QueryOperator.IS_NOT_NULL:
            return actual is not None
        if op == QueryOperator.EQUALS:
            return actual == self.value
        if op == QueryOperator.NOT_EQUALS:
            return actual != self.value
        if op == QueryOperator.IN:
            return actual in self.value
        if op == QueryOperator.NOT_IN:
            return actual not in self.value

        # Ordering and string operators never match a missing value
        if actual is None:
            return False
        if op == QueryOperator.GREATER_THAN:
            return actual > self.value
        if op == QueryOperator.GREATER_THAN_OR_EQUAL:
            return actual >= self.value
        if op == QueryOperator.LESS_THAN:
            return actual < self.value
        if op == QueryOperator.LESS_THAN_OR_EQUAL:
            return actual <= self.value
        if op == QueryOperator.CONTAINS:
            return self.value in actual
        if op == QueryOperator.STARTS_WITH:
            return str(actual).startswith(self.value)
        if op == QueryOperator.ENDS_WITH:
            return str(actual).endswith(self.value)

        raise InvalidQueryError(f"Unsupported operator: {op}")


@dataclass(frozen=True)
class SortCriteria:
    """Represents sorting criteria; ``key`` is a field name or a callable"""
    key: Union[str, Callable[[Any], Any]]
    direction: SortDirection = SortDirection.ASC

    def value_for(self, entity: Any) -> Any:
        if callable(self.key):
            return self.key(entity)
        return getattr(entity, self.key)


@dataclass(frozen=True)
class QueryOptions:
    """
    Options for querying entities.

    Filters and sorts added after a skip or take apply to the paged window,
    so each paged set of options is kept as ``previous`` and evaluated first.
    """
    filters: Tuple[QueryFilter, ...] = ()
    predicates: Tuple[Predicate, ...] = ()
    sort_by: Tuple[SortCriteria, ...] = ()
    limit: Optional[int] = None
    offset: int = 0
    previous: Optional['QueryOptions'] = None

    @property
    def is_paged(self) -> bool:
        return self.offset > 0 or self.limit is not None

    def _open_stage(self) -> 'QueryOptions':
        return QueryOptions(previous=self) if self.is_paged else self

    def add_filter(self, field: str, operator: QueryOperator, value: Any = None) -> 'QueryOptions':
        stage = self._open_stage()
        return replace(stage, filters=stage.filters + (QueryFilter(field, operator, value),))

    def add_predicate(self, predicate: Predicate) -> 'QueryOptions':
        stage = self._open_stage()
        return replace(stage, predicates=stage.predicates + (predicate,))

    def add_sort(self, key, direction: SortDirection = SortDirection.ASC) -> 'QueryOptions':
        stage = self._open_stage()
        return replace(stage, sort_by=stage.sort_by + (SortCriteria(key, direction),))

    def add_offset(self, count: int) -> 'QueryOptions':
        # Skipping inside an existing window shrinks it
        limit = None if self.limit is None else max(self.limit - count, 0)
        return replace(self, offset=self.offset + count, limit=limit)

    def add_limit(self, count: int) -> 'QueryOptions':
        limit = count if self.limit is None else min(self.limit, count)
        return replace(self, limit=limit)

    def matches(self, entity: Any) -> bool:
        return (all(f.matches(entity) for f in self.filters)
                and all(p(entity) for p in self.predicates))

    def apply(self, entities: Sequence[EntityType]) -> List[EntityType]:
        """Filter, sort and page a candidate list"""
        if self.previous is not None:
            entities = self.previous.apply(entities)
        result = [e for e in entities if self.matches(e)]

        # Stable sorts applied from the least significant key give
        # multi-key ordering while keeping input order for ties.
        # Missing values go last in both directions.
        for criteria in reversed(self.sort_by):
            present = [e for e in result if criteria.value_for(e) is not None]
            missing = [e for e in result if criteria.value_for(e) is None]
            present.sort(
                key=criteria.value_for,
                reverse=criteria.direction == SortDirection.DESC
            )
            result = present + missing

        if self.offset:
            result = result[self.offset:]
        if self.limit is not None:
            result = result[:self.limit]
        return result


class QuerySource(Protocol):
    """Anything that can evaluate a query, usually a persistence context"""

    async def execute_query(self, entity_type: Type, options: QueryOptions,
                            attach: bool = True) -> List[Any]:
        ...


class Query(Generic[EntityType]):
    """
    Lazy, restartable view over the entities of one type.

    Builder methods (where, order_by, skip, take) return new queries.
    Terminal methods are async and evaluate against the source each time.
    """

    def __init__(self, source: QuerySource, entity_type: Type[EntityType],
                 options: Optional[QueryOptions] = None):
        self._source = source
        self.entity_type = entity_type
        self.options = options or QueryOptions()

    def _derive(self, options: QueryOptions) -> 'Query[EntityType]':
        return Query(self._source, self.entity_type, options)

    # Builder operations
    def where(self, condition: Union[str, Predicate],
              operator: Union[QueryOperator, str, None] = None,
              value: Any = None) -> 'Query[EntityType]':
        """
        Filter by a predicate or by a field condition.

            query.where(lambda m: m.last_name == "Huber")
            query.where("last_name", QueryOperator.EQUALS, "Huber")
        """
        if callable(condition):
            return self._derive(self.options.add_predicate(condition))
        if operator is None:
            raise InvalidQueryError("A field condition needs an operator")
        return self._derive(self.options.add_filter(condition, operator, value))

    def filter_by(self, **equals: Any) -> 'Query[EntityType]':
        """Equality filters given as keyword arguments"""
        options = self.options
        for field_name, expected in equals.items():
            options = options.add_filter(field_name, QueryOperator.EQUALS, expected)
        return self._derive(options)

    def order_by(self, key, direction: SortDirection = SortDirection.ASC) -> 'Query[EntityType]':
        """Add a sort key; later calls break ties of earlier ones"""
        return self._derive(self.options.add_sort(key, direction))

    def order_by_desc(self, key) -> 'Query[EntityType]':
        return self.order_by(key, SortDirection.DESC)

    def skip(self, count: int) -> 'Query[EntityType]':
        if count < 0:
            raise InvalidQueryError("skip count must not be negative")
        return self._derive(self.options.add_offset(count))

    def take(self, count: int) -> 'Query[EntityType]':
        if count < 0:
            raise InvalidQueryError("take count must not be negative")
        return self._derive(self.options.add_limit(count))

    # Terminal operations
    async def to_list(self) -> List[EntityType]:
        return await self._source.execute_query(self.entity_type, self.options)

    async def first(self, predicate: Optional[Predicate] = None) -> EntityType:
        """First match; raises EntityNotFoundError when there is none"""
        entity = await self.first_or_none(predicate)
        if entity is None:
            raise EntityNotFoundError(self.entity_type)
        return entity

    async def first_or_none(self, predicate: Optional[Predicate] = None) -> Optional[EntityType]:
        query = self.where(predicate) if predicate else self
        entities = await query.take(1).to_list()
        return entities[0] if entities else None

    async def single(self, predicate: Optional[Predicate] = None) -> EntityType:
        """
        The only match.

        Raises EntityNotFoundError for zero matches and AmbiguousMatchError
        for more than one.
        """
        query = self.where(predicate) if predicate else self
        count = await query.count()
        if count == 0:
            raise EntityNotFoundError(self.entity_type)
        if count > 1:
            raise AmbiguousMatchError(self.entity_type, count)
        return (await query.to_list())[0]

    async def single_or_none(self, predicate: Optional[Predicate] = None) -> Optional[EntityType]:
        query = self.where(predicate) if predicate else self
        count = await query.count()
        if count > 1:
            raise AmbiguousMatchError(self.entity_type, count)
        if count == 0:
            return None
        return (await query.to_list())[0]

    async def count(self) -> int:
        entities = await self._source.execute_query(
            self.entity_type, self.options, attach=False
        )
        return len(entities)

    async def any(self) -> bool:
        return await self.take(1).count() > 0

    async def __aiter__(self) -> AsyncIterator[EntityType]:
        for entity in await self.to_list():
            yield entity

    def __repr__(self) -> str:
        return (f"Query({self.entity_type.__name__}, filters={len(self.options.filters)}, "
                f"predicates={len(self.options.predicates)}, sort={len(self.options.sort_by)})")


__all__ = [
    "QueryOperator", "SortDirection", "QueryFilter", "SortCriteria",
    "QueryOptions", "QuerySource", "Query"
]
