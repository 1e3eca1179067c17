"""School entities: a class roster and the members it owns."""

from datetime import date
from typing import Any, ClassVar, Dict, List

from pydantic import Field

from ..exceptions import InvalidOperationError
from .entity import Entity, OwnedCollection


class Member(Entity):
    """A pupil belonging to exactly one roster"""

    first_name: str
    last_name: str
    birth_date: date
    roster_id: int = 0

    def __setattr__(self, name: str, value: Any):
        # Owner may be filled in once (when the roster is first committed)
        if name == "roster_id" and self.roster_id and value != self.roster_id:
            raise InvalidOperationError(
                f"Member {self.id} already belongs to roster {self.roster_id}"
            )
        super().__setattr__(name, value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ClassRoster(Entity):
    """A named school class"""

    name: str
    members: List[Member] = Field(default_factory=list)

    owned_collections: ClassVar[Dict[str, OwnedCollection]] = {
        "members": OwnedCollection(Member, "roster_id"),
    }


__all__ = ["ClassRoster", "Member"]
