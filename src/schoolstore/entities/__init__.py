"""
Entities - Persistent Domain Records

Entity is the shared base; ClassRoster and Member are the school model.
"""

from .entity import Entity, OwnedCollection
from .school import ClassRoster, Member

__all__ = ["Entity", "OwnedCollection", "ClassRoster", "Member"]
