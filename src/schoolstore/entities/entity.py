"""
Entity Base - Plain Persistent Records

Entities are pydantic models with a surrogate integer identity. The identity
is zero until the store assigns one at the first successful commit, and it is
never reassigned afterwards.

Ownership between entities is declared on the owning class:

    class Order(Entity):
        lines: List[OrderLine] = Field(default_factory=list)

        owned_collections: ClassVar[Dict[str, OwnedCollection]] = {
            "lines": OwnedCollection(OrderLine, "order_id"),
        }

The child keeps only the owner's id (``order_id``); there is no object
back-reference, and deleting the owner deletes its children.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict

from ..exceptions import InvalidOperationError


@dataclass(frozen=True)
class OwnedCollection:
    """An owned one-to-many relation: child type plus its foreign key field"""
    child_type: Type["Entity"]
    foreign_key: str


class Entity(BaseModel):
    """
    Base class for persistent entities.

    Column values are every field except ``id`` and the owned collections;
    those are what the store keeps and what change detection compares.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: int = 0

    owned_collections: ClassVar[Dict[str, OwnedCollection]] = {}

    def __setattr__(self, name: str, value: Any):
        if name == "id" and self.id and value != self.id:
            raise InvalidOperationError(
                f"{self.__class__.__name__} {self.id} already has an identity"
            )
        super().__setattr__(name, value)

    @property
    def is_transient(self) -> bool:
        """True until the store has assigned an identity"""
        return self.id == 0

    def column_values(self) -> Dict[str, Any]:
        """Values the store persists for this entity"""
        return self.model_dump(exclude={"id", *self.owned_collections})

    @classmethod
    def materialize(cls, entity_id: int, values: Dict[str, Any]) -> "Entity":
        """Build an instance from a stored row"""
        return cls.model_validate({**values, "id": entity_id})

    @classmethod
    def owner_relation(cls) -> Optional[Tuple[Type["Entity"], str, OwnedCollection]]:
        """Find the (owner type, attribute, relation) that owns this type, if any"""
        for owner_type in _entity_subclasses(Entity):
            for attribute, relation in owner_type.owned_collections.items():
                if relation.child_type is cls:
                    return owner_type, attribute, relation
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"


def _entity_subclasses(root: Type[Entity]) -> List[Type[Entity]]:
    found = []
    for subclass in root.__subclasses__():
        found.append(subclass)
        found.extend(_entity_subclasses(subclass))
    return found


__all__ = ["Entity", "OwnedCollection"]
