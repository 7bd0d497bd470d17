"""
Activity Log

Append-only audit trail of task changes. Recording is best-effort: failures
come back as a result dict for the caller to log, they never abort the
mutation that triggered them.
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError as SchemaError

from .errors import StorageFailure
from .ids import is_valid_id, require_id
from .models import ActivityEntry, utcnow
from .store import ACTIVITIES, DESCENDING, TASKS, USERS, Document, EntityStore

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"
UNNAMED_TASK = "Unnamed Task"


class ActivityLog:

    def __init__(self, store: EntityStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def record(self, actor: str, action: str, task: str, project: str,
               details: Any = None, field_changed: Optional[str] = None,
               old_value: Any = None, new_value: Any = None) -> Dict[str, Any]:
        """
        Append one entry, timestamped now.

        Returns:
            {"success": True, "entry": ActivityEntry} or {"success": False, "error": str}
        """
        try:
            entry = ActivityEntry(
                user=actor,
                action=action,
                task=task,
                project=project,
                details=details,
                field_changed=field_changed,
                old_value=old_value,
                new_value=new_value,
                timestamp=self.clock(),
            )
        except SchemaError as e:
            return {"success": False, "error": f"Invalid activity entry: {e.errors()[0]['msg']}"}

        try:
            self.store.create(ACTIVITIES, entry.to_document())
        except StorageFailure as e:
            logger.error(f"Failed to record '{action}' activity for task {task}: {e}")
            return {"success": False, "error": str(e)}

        return {"success": True, "entry": entry}

    def list_for_project(self, project_id: str, limit: Optional[int] = 10) -> Iterator[Dict[str, Any]]:
        """
        Newest-first entries for a project, each joined with actor and task
        display fields. Entries are produced lazily.
        """
        require_id(project_id, "project ID")
        entries = self.store.find(
            ACTIVITIES, {"project": project_id},
            sort=[("timestamp", DESCENDING)], limit=limit,
        )
        return self._present_all(entries)

    def list_for_task(self, task_id: str, limit: Optional[int] = None) -> List[Document]:
        require_id(task_id, "task ID")
        return self.store.find(
            ACTIVITIES, {"task": task_id},
            sort=[("timestamp", DESCENDING)], limit=limit,
        )

    def _present_all(self, entries: List[Document]) -> Iterator[Dict[str, Any]]:
        users: Dict[str, Optional[Document]] = {}
        tasks: Dict[str, Optional[Document]] = {}
        for entry in entries:
            user = self._lookup(USERS, entry.get("user"), users)
            task = self._lookup(TASKS, entry.get("task"), tasks)
            yield self._present(entry, user, task)

    def _lookup(self, kind: str, entity_id: Optional[str], cache: Dict[str, Optional[Document]]):
        if not is_valid_id(entity_id):
            return None
        if entity_id not in cache:
            cache[entity_id] = self.store.find_by_id(kind, entity_id)
        return cache[entity_id]

    @staticmethod
    def _present(entry: Document, user: Optional[Document], task: Optional[Document]) -> Dict[str, Any]:
        name = UNKNOWN_USER
        if user:
            full_name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
            if full_name:
                name = full_name

        return {
            "id": entry["id"],
            "user": {"id": entry.get("user") or "unknown", "name": name},
            "action": entry.get("action"),
            "task": entry.get("task"),
            "task_name": (task or {}).get("name") or UNNAMED_TASK,
            "task_type": (task or {}).get("type") or "Task",
            "status": (task or {}).get("status") or "Unknown",
            "timestamp": entry.get("timestamp"),
            "details": entry.get("details"),
            "field_changed": entry.get("field_changed"),
            "old_value": entry.get("old_value"),
            "new_value": entry.get("new_value"),
        }
