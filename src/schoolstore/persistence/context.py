"""
Persistence Context - Unit of Work over a Named Store

💾 Change Tracking by Snapshot:
The context keeps an identity map of every entity it has loaded or
committed, together with a snapshot of the column values last seen in the
store. Nothing is intercepted on assignment; ``commit()`` diffs each tracked
entity against its snapshot, inserts staged additions, deletes staged
removals, and sends it all to the store as one transaction.

Usage:
    async with PersistenceContext("school") as context:
        roster = ClassRoster(name="6ABIF")
        context.add(roster)
        await context.commit()          # roster.id is now assigned

    async with PersistenceContext("school") as context:
        roster = await context.set(ClassRoster).first()
        roster.name = "6AKIF"
        await context.commit()          # detected by snapshot diff

Leaving the ``with`` block never commits; pending work is discarded.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import (
    TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type, TypeVar, Union
)
import logging
import uuid

from ..config import get_config
from ..exceptions import (
    ContextClosedError, InvalidOperationError, NotTrackedError
)
from .backends import StoreBackend, StoredRow, open_store
from .query import Query, QueryOptions

if TYPE_CHECKING:
    from ..entities.entity import Entity, OwnedCollection

logger = logging.getLogger(__name__)

EntityType = TypeVar('EntityType', bound='Entity')
EntityKey = Tuple[Type, int]


@dataclass
class EntitySnapshot:
    """Column values and version as last seen in the store"""
    version: int
    values: Dict[str, Any]


def _contains(entities: List[Any], entity: Any) -> bool:
    return any(candidate is entity for candidate in entities)


def _discard(entities: List[Any], entity: Any):
    entities[:] = [candidate for candidate in entities if candidate is not entity]


def _ownership_depth(entity_type: Type) -> int:
    depth = 0
    relation = entity_type.owner_relation()
    while relation is not None:
        depth += 1
        relation = relation[0].owner_relation()
    return depth


class EntitySet(Query[EntityType]):
    """Typed collection of a context: a query plus staging operations"""

    def __init__(self, context: 'PersistenceContext', entity_type: Type[EntityType]):
        super().__init__(context, entity_type)
        self._context = context

    def _check_type(self, entity: Any):
        if not isinstance(entity, self.entity_type):
            raise InvalidOperationError(
                f"Expected {self.entity_type.__name__}, got {entity.__class__.__name__}"
            )

    def add(self, entity: EntityType) -> EntityType:
        self._check_type(entity)
        self._context.add(entity)
        return entity

    def remove(self, entity: EntityType) -> EntityType:
        self._check_type(entity)
        self._context.remove(entity)
        return entity

    async def find(self, entity_id: int) -> Optional[EntityType]:
        return await self._context.find(self.entity_type, entity_id)


class PersistenceContext:
    """
    Unit of Work bound to one store.

    A context is short-lived: open it, do a bounded piece of work, commit,
    and close it. It is not safe to run two operations on the same context
    concurrently.
    """

    def __init__(self, store: Union[str, StoreBackend], backend: Optional[str] = None,
                 sensitive_data_logging: Optional[bool] = None):
        if isinstance(store, StoreBackend):
            self._store = store
        else:
            self._store = open_store(store, backend)

        if sensitive_data_logging is None:
            sensitive_data_logging = get_config().persistence.sensitive_data_logging
        self.sensitive_data_logging = sensitive_data_logging

        self._context_id = str(uuid.uuid4())
        self._closed = False

        # Entity tracking
        self._identity_map: Dict[EntityKey, 'Entity'] = {}
        self._snapshots: Dict[EntityKey, EntitySnapshot] = {}
        self._added: List['Entity'] = []
        self._deleted: List['Entity'] = []

        self._change_log: List[Dict[str, Any]] = []

    @property
    def store(self) -> StoreBackend:
        return self._store

    @property
    def context_id(self) -> str:
        return self._context_id

    @property
    def is_closed(self) -> bool:
        return self._closed

    def set(self, entity_type: Type[EntityType]) -> EntitySet[EntityType]:
        """Typed collection for one entity type"""
        self._ensure_open()
        return EntitySet(self, entity_type)

    # Staging
    def add(self, entity: 'Entity') -> 'Entity':
        """
        Stage a new entity for insertion.

        Owned children that are still transient are staged with it. The
        entity must not have an identity yet.
        """
        self._ensure_open()
        if not entity.is_transient:
            raise InvalidOperationError(
                f"Cannot add {entity.__class__.__name__} {entity.id}: "
                f"it already has an identity"
            )
        if _contains(self._added, entity):
            return entity

        self._added.append(entity)
        self._log_change("entity_added", {"entity": self._describe(entity)})
        logger.debug(f"Staged insert of {self._describe(entity)}")

        for attribute in entity.owned_collections:
            for child in getattr(entity, attribute):
                if child.is_transient:
                    self.add(child)

        self._link_to_tracked_owner(entity)
        return entity

    def remove(self, entity: 'Entity') -> 'Entity':
        """
        Stage a tracked entity for deletion.

        Removing an entity that was added but never committed, or a new
        child that was only appended to an owner's collection, just
        unstages it and takes it out of that collection. Owned children of
        a stored entity are removed by the store when the commit runs.
        """
        self._ensure_open()
        if _contains(self._added, entity):
            self._unstage(entity)
            return entity
        if entity.is_transient and any(
                child is entity for _, _, child in self._owned_children()):
            self._unstage(entity)
            return entity

        key = self._key(entity)
        if entity.is_transient or self._identity_map.get(key) is not entity:
            raise NotTrackedError(type(entity), entity.id)

        if not _contains(self._deleted, entity):
            self._deleted.append(entity)
            self._log_change("entity_removed", {"entity": self._describe(entity)})
            logger.debug(f"Staged delete of {self._describe(entity)}")
        return entity

    def _unstage(self, entity: 'Entity'):
        _discard(self._added, entity)
        self._detach_from_owner(entity)
        for attribute in entity.owned_collections:
            for child in getattr(entity, attribute):
                if _contains(self._added, child):
                    _discard(self._added, child)
        self._log_change("entity_unstaged", {"entity": self._describe(entity)})

    def _link_to_tracked_owner(self, entity: 'Entity'):
        relation = type(entity).owner_relation()
        if relation is None:
            return
        owner_type, attribute, owned = relation
        owner_id = getattr(entity, owned.foreign_key)
        if not owner_id:
            return
        owner = self._identity_map.get((owner_type, owner_id))
        if owner is not None and not _contains(getattr(owner, attribute), entity):
            getattr(owner, attribute).append(entity)

    def _detach_from_owner(self, entity: 'Entity'):
        relation = type(entity).owner_relation()
        if relation is None:
            return
        owner_type, attribute, _ = relation
        for candidate in list(self._identity_map.values()) + self._added:
            if isinstance(candidate, owner_type):
                _discard(getattr(candidate, attribute), entity)

    # Change detection
    def _owned_children(self) -> List[Tuple['Entity', 'OwnedCollection', 'Entity']]:
        """
        Every (owner, collection, child) reachable from tracked and staged
        owners, including transient children nobody has added yet.
        """
        found = []
        queue = [e for e in self._identity_map.values() if not self._is_deleted(e)]
        queue.extend(self._added)
        seen = {id(e) for e in queue}

        index = 0
        while index < len(queue):
            owner = queue[index]
            index += 1
            for attribute, owned in owner.owned_collections.items():
                for child in getattr(owner, attribute):
                    found.append((owner, owned, child))
                    if id(child) not in seen:
                        seen.add(id(child))
                        queue.append(child)
        return found

    def _detect_changes(self) -> Dict[int, 'Entity']:
        """
        Stage transient children found in owned collections and check that
        no child moved between owners.

        Returns a map of id(child) -> owner for every transient child.
        """
        owner_of: Dict[int, 'Entity'] = {}
        for owner, owned, child in self._owned_children():
            owner_id = getattr(child, owned.foreign_key)
            if owner_id and owner_id != owner.id:
                raise InvalidOperationError(
                    f"{self._describe(child)} already belongs to "
                    f"{type(owner).__name__} {owner_id}"
                )
            if child.is_transient:
                owner_of[id(child)] = owner
                if not _contains(self._added, child):
                    self.add(child)
            elif self._identity_map.get(self._key(child)) is not child:
                raise NotTrackedError(type(child), child.id)
        return owner_of

    def _has_unstaged_children(self) -> bool:
        return any(child.is_transient and not _contains(self._added, child)
                   for _, _, child in self._owned_children())

    def _modified_entities(self) -> List[Tuple['Entity', Dict[str, Any]]]:
        modified = []
        for key, entity in self._identity_map.items():
            if self._is_deleted(entity):
                continue
            values = entity.column_values()
            if values != self._snapshots[key].values:
                modified.append((entity, values))
        return modified

    def has_changes(self) -> bool:
        """True when a commit would write something"""
        self._ensure_open()
        return bool(self._added or self._deleted or self._modified_entities()
                    or self._has_unstaged_children())

    # Commit
    async def commit(self) -> int:
        """
        Write all staged changes to the store in one transaction.

        Returns the number of affected records, including children removed
        by cascading deletes. On failure nothing is written, no identities
        are assigned and the staged changes stay pending.
        """
        self._ensure_open()
        owner_of = self._detect_changes()

        inserts = sorted(self._added, key=lambda e: _ownership_depth(type(e)))
        updates = self._modified_entities()
        deletes = list(self._deleted)

        if not (inserts or updates or deletes):
            logger.debug(f"Context {self._context_id}: nothing to commit")
            return 0

        transaction = await self._store.begin_transaction()
        new_ids: Dict[int, int] = {}
        insert_values: Dict[int, Dict[str, Any]] = {}
        try:
            for entity in inserts:
                values = self._insert_values(entity, owner_of, new_ids)
                new_ids[id(entity)] = transaction.insert(type(entity), values)
                insert_values[id(entity)] = values

            for entity, values in updates:
                snapshot = self._snapshots[self._key(entity)]
                transaction.update(type(entity), entity.id, values, snapshot.version)

            for entity in deletes:
                snapshot = self._snapshots[self._key(entity)]
                transaction.delete(type(entity), entity.id, snapshot.version)

            result = await self._store.commit_transaction(transaction)
        except Exception as e:
            await self._store.rollback_transaction(transaction)
            logger.warning(f"Context {self._context_id}: commit to '{self._store.name}' failed: {e}")
            self._log_change("commit_failed", {"error": str(e)})
            raise

        for entity in inserts:
            values = insert_values[id(entity)]
            relation = type(entity).owner_relation()
            if relation is not None:
                foreign_key = relation[2].foreign_key
                setattr(entity, foreign_key, values[foreign_key])
            entity.id = new_ids[id(entity)]
            key = self._key(entity)
            self._identity_map[key] = entity
            self._snapshots[key] = EntitySnapshot(result.versions[key], values)

        for entity, values in updates:
            key = self._key(entity)
            self._snapshots[key] = EntitySnapshot(result.versions[key], values)

        for key in result.deleted:
            tracked = self._identity_map.pop(key, None)
            self._snapshots.pop(key, None)
            if tracked is not None:
                self._detach_from_owner(tracked)

        self._added.clear()
        self._deleted.clear()

        logger.info(
            f"Context {self._context_id} committed to '{self._store.name}': "
            f"{len(inserts)} inserted, {len(updates)} updated, "
            f"{len(result.deleted)} deleted"
        )
        self._log_change("committed", {
            "affected": result.affected,
            "inserted": len(inserts),
            "updated": len(updates),
            "deleted": len(result.deleted)
        })
        return result.affected

    def _insert_values(self, entity: 'Entity', owner_of: Dict[int, 'Entity'],
                       new_ids: Dict[int, int]) -> Dict[str, Any]:
        values = entity.column_values()
        relation = type(entity).owner_relation()
        if relation is None:
            return values

        owner_type, _, owned = relation
        owner = owner_of.get(id(entity))
        if owner is not None:
            values[owned.foreign_key] = owner.id or new_ids[id(owner)]
        if not values[owned.foreign_key]:
            raise InvalidOperationError(
                f"{self._describe(entity)} must belong to a {owner_type.__name__}"
            )
        return values

    # Queries
    async def execute_query(self, entity_type: Type[EntityType], options: QueryOptions,
                            attach: bool = True) -> List[EntityType]:
        """
        Evaluate query options against the store plus local state.

        Tracked entities are matched with their current in-memory values,
        pending deletes are skipped and pending additions come after the
        stored rows.
        """
        self._ensure_open()
        rows = await self._store.load_rows(entity_type)

        candidates: List['Entity'] = []
        untracked_rows: Dict[int, StoredRow] = {}
        for row in rows:
            tracked = self._identity_map.get((entity_type, row.entity_id))
            if tracked is not None:
                if not self._is_deleted(tracked):
                    candidates.append(tracked)
                continue
            entity = entity_type.materialize(row.entity_id, row.values)
            untracked_rows[id(entity)] = row
            candidates.append(entity)

        candidates.extend(e for e in self._added if type(e) is entity_type)

        selected = options.apply(candidates)
        if attach:
            for entity in selected:
                row = untracked_rows.get(id(entity))
                if row is not None:
                    await self._attach(entity, row)
        return selected

    async def find(self, entity_type: Type[EntityType], entity_id: int) -> Optional[EntityType]:
        """Look up an entity by identity, checking the identity map first"""
        self._ensure_open()
        tracked = self._identity_map.get((entity_type, entity_id))
        if tracked is not None:
            return None if self._is_deleted(tracked) else tracked

        row = await self._store.load_row(entity_type, entity_id)
        if row is None:
            return None
        entity = entity_type.materialize(row.entity_id, row.values)
        await self._attach(entity, row)
        return entity

    async def _attach(self, entity: 'Entity', row: StoredRow):
        key = self._key(entity)
        self._identity_map[key] = entity
        self._snapshots[key] = EntitySnapshot(row.version, dict(row.values))
        await self._load_owned(entity)

    async def _load_owned(self, entity: 'Entity'):
        for attribute, owned in entity.owned_collections.items():
            children = []
            for row in await self._store.load_rows(owned.child_type):
                if row.values.get(owned.foreign_key) != entity.id:
                    continue
                child = self._identity_map.get((owned.child_type, row.entity_id))
                if child is None:
                    child = owned.child_type.materialize(row.entity_id, row.values)
                    await self._attach(child, row)
                if not self._is_deleted(child):
                    children.append(child)

            for pending in self._added:
                if (isinstance(pending, owned.child_type)
                        and getattr(pending, owned.foreign_key) == entity.id
                        and not _contains(children, pending)):
                    children.append(pending)

            setattr(entity, attribute, children)

    # Helpers
    def _key(self, entity: 'Entity') -> EntityKey:
        return (type(entity), entity.id)

    def _is_deleted(self, entity: 'Entity') -> bool:
        return _contains(self._deleted, entity)

    def _ensure_open(self):
        if self._closed:
            raise ContextClosedError(f"Context {self._context_id} is closed")

    def _describe(self, entity: 'Entity') -> str:
        label = f"{entity.__class__.__name__}({entity.id})"
        if self.sensitive_data_logging:
            return f"{label} {entity.column_values()}"
        return label

    def _log_change(self, change_type: str, data: Dict[str, Any]):
        self._change_log.append({
            "timestamp": datetime.now(),
            "context_id": self._context_id,
            "change_type": change_type,
            "data": data
        })

    def get_change_log(self) -> List[Dict[str, Any]]:
        """Audit trail of this context"""
        return self._change_log.copy()

    def tracked_entities(self) -> List['Entity']:
        return list(self._identity_map.values())

    # Lifecycle
    def close(self):
        """Release the context; pending changes are discarded"""
        if self._closed:
            return
        if self._added or self._deleted:
            logger.debug(
                f"Context {self._context_id} closed with {len(self._added)} pending inserts "
                f"and {len(self._deleted)} pending deletes"
            )
        self._log_change("closed", {})
        self._identity_map.clear()
        self._snapshots.clear()
        self._added.clear()
        self._deleted.clear()
        self._closed = True

    def __enter__(self):
        self._ensure_open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    async def __aenter__(self):
        self._ensure_open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


__all__ = ["PersistenceContext", "EntitySet", "EntitySnapshot"]
