"""
Entity Store contract.

The consistency engine only talks to persistence through this narrow
interface. Documents are plain dicts keyed by "id"; filters are mappings of
field name to either a literal (equality, None matches a missing/null field)
or an operator dict: {"$in": [...]}, {"$ne": value}, {"$contains": value}
(membership in a list field).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

USERS = "users"
PROJECTS = "projects"
TASKS = "tasks"
SPRINTS = "sprints"
ACTIVITIES = "activities"

KINDS = (USERS, PROJECTS, TASKS, SPRINTS, ACTIVITIES)

Document = Dict[str, Any]
Filter = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class EntityStore(ABC):
    """Abstract document store consumed by the tracker components."""

    @abstractmethod
    def find_by_id(self, kind: str, entity_id: str) -> Optional[Document]:
        """Return the document or None when it does not exist."""

    @abstractmethod
    def find(self, kind: str, filter: Optional[Filter] = None,
             sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Document]:
        """Return documents matching every condition in filter."""

    @abstractmethod
    def create(self, kind: str, data: Document) -> Document:
        """Insert a document, assigning an id when absent, and return it."""

    @abstractmethod
    def update(self, kind: str, entity_id: str, patch: Document) -> Optional[Document]:
        """Shallow-merge patch into the document; None when it does not exist."""

    @abstractmethod
    def delete(self, kind: str, entity_id: str) -> bool:
        """Delete a document, returning whether anything was removed."""

    def count(self, kind: str, filter: Optional[Filter] = None) -> int:
        return len(self.find(kind, filter))

    def exists(self, kind: str, filter: Optional[Filter] = None) -> bool:
        return bool(self.find(kind, filter, limit=1))

    def ping(self) -> bool:
        """Return True when the backing storage is reachable."""
        return True
