"""
Sprint Membership & Aggregate Tracker

Keeps a sprint's task set, the tasks' sprint references and the derived
counters (total_tasks, completed_tasks) consistent. Every membership change
and recompute for a sprint runs under that sprint's lock so concurrent status
changes cannot lose counter updates.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import CrossProjectViolation, NotFound, StorageFailure
from .ids import require_id
from .models import TERMINAL_STATUSES, utcnow
from .store import SPRINTS, TASKS, Document, EntityStore

logger = logging.getLogger(__name__)


class SprintTracker:

    def __init__(self, store: EntityStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, sprint_id: str) -> threading.RLock:
        """Return the lock serializing work on one sprint, creating it on first use."""
        with self._registry_lock:
            lock = self._locks.get(sprint_id)
            if lock is None:
                lock = self._locks[sprint_id] = threading.RLock()
            return lock

    def forget(self, sprint_id: str) -> None:
        with self._registry_lock:
            self._locks.pop(sprint_id, None)

    # Aggregates

    def recompute(self, sprint_id: str) -> Dict[str, Any]:
        """
        Recount total and completed member tasks and store the two counters.

        Idempotent. Storage failures are logged and reported in the result.
        """
        with self.lock_for(sprint_id):
            try:
                sprint = self.store.find_by_id(SPRINTS, sprint_id)
                if sprint is None:
                    return {"success": False, "error": "Sprint not found"}

                members = sprint.get("tasks") or []
                completed = 0
                if members:
                    completed = self.store.count(TASKS, {
                        "id": {"$in": members},
                        "status": {"$in": list(TERMINAL_STATUSES)},
                    })

                self.store.update(SPRINTS, sprint_id, {
                    "total_tasks": len(members),
                    "completed_tasks": completed,
                })
            except StorageFailure as e:
                logger.error(f"Failed to recompute sprint {sprint_id}: {e}")
                return {"success": False, "error": str(e)}

        return {
            "success": True,
            "sprint": sprint_id,
            "total_tasks": len(members),
            "completed_tasks": completed,
        }

    def recompute_for_task(self, task_id: str) -> Dict[str, Any]:
        """Recompute every sprint holding the task; best-effort."""
        try:
            sprint_ids = self.sprint_ids_containing(task_id)
        except StorageFailure as e:
            logger.error(f"Failed to look up sprints for task {task_id}: {e}")
            return {"success": False, "error": str(e)}

        failures = []
        for sprint_id in sprint_ids:
            result = self.recompute(sprint_id)
            if not result["success"]:
                failures.append(f"{sprint_id}: {result['error']}")

        if failures:
            return {"success": False, "error": "; ".join(failures), "sprints": sprint_ids}
        return {"success": True, "sprints": sprint_ids}

    @staticmethod
    def completion_patch(old_status: Optional[str], new_status: str,
                         completed_at: Optional[datetime], now: datetime) -> Dict[str, Any]:
        """Set completed_at when a task enters a terminal status, clear it when it leaves."""
        if new_status in TERMINAL_STATUSES:
            if not completed_at:
                return {"completed_at": now}
        elif completed_at:
            return {"completed_at": None}
        return {}

    # Membership

    def sprint_ids_containing(self, task_id: str) -> List[str]:
        return [sprint["id"] for sprint in self.store.find(SPRINTS, {"tasks": {"$contains": task_id}})]

    def _change_members(self, sprint_id: str, add: Iterable[str] = (),
                        remove: Iterable[str] = ()) -> Optional[Document]:
        add, remove = list(add), set(remove)
        with self.lock_for(sprint_id):
            sprint = self.store.find_by_id(SPRINTS, sprint_id)
            if sprint is None:
                return None

            members = [task_id for task_id in sprint.get("tasks") or [] if task_id not in remove]
            for task_id in add:
                if task_id not in members:
                    members.append(task_id)

            if members != sprint.get("tasks"):
                self.store.update(SPRINTS, sprint_id, {"tasks": members, "updated": self.clock()})
            result = self.recompute(sprint_id)
            if not result["success"]:
                logger.warning(f"Sprint {sprint_id} counters may be stale: {result['error']}")
            return self.store.find_by_id(SPRINTS, sprint_id)

    def check_assignment(self, task: Document, sprint_id: str) -> Document:
        """
        Check that a task may join a sprint, without writing anything.

        Raises:
            NotFound: If the sprint does not exist
            CrossProjectViolation: If task and sprint belong to different projects
        """
        require_id(sprint_id, "sprint ID")
        sprint = self.store.find_by_id(SPRINTS, sprint_id)
        if sprint is None:
            raise NotFound("Sprint not found")
        if sprint.get("project") != task.get("project"):
            raise CrossProjectViolation("Task and sprint must belong to the same project")
        return sprint

    def assign_task_to_sprint(self, task_id: str, sprint_id: Optional[str]) -> Document:
        """
        Move a task into a sprint, or out of every sprint when sprint_id is None.

        The task leaves every other sprint first, so it is a member of at
        most one sprint afterwards. Every affected sprint is recomputed.
        """
        require_id(task_id, "task ID")
        task = self.store.find_by_id(TASKS, task_id)
        if task is None:
            raise NotFound("Task not found")

        if sprint_id is not None:
            self.check_assignment(task, sprint_id)

        for other_id in self.sprint_ids_containing(task_id):
            if other_id != sprint_id:
                self._change_members(other_id, remove=[task_id])

        if sprint_id is not None:
            self._change_members(sprint_id, add=[task_id])

        updated = self.store.update(TASKS, task_id, {"sprint": sprint_id, "updated": self.clock()})
        logger.info(f"Task {task_id} moved to sprint {sprint_id or 'backlog'}")
        return updated

    def add_tasks(self, sprint_id: str, task_ids: List[str]) -> Document:
        """
        Add several tasks to a sprint, all or nothing.

        Every task must exist and share the sprint's project before any
        membership changes.
        """
        require_id(sprint_id, "sprint ID")
        for task_id in task_ids:
            require_id(task_id, "task ID")

        sprint = self.store.find_by_id(SPRINTS, sprint_id)
        if sprint is None:
            raise NotFound("Sprint not found")

        unique_ids = list(dict.fromkeys(task_ids))
        tasks = self.store.find(TASKS, {"id": {"$in": unique_ids}})
        if len(tasks) != len(unique_ids):
            found = {task["id"] for task in tasks}
            missing = [task_id for task_id in unique_ids if task_id not in found]
            raise NotFound("Some tasks were not found", missing=missing)
        foreign = [task["id"] for task in tasks if task.get("project") != sprint.get("project")]
        if foreign:
            raise CrossProjectViolation("Some tasks do not belong to the sprint's project", tasks=foreign)

        for task_id in unique_ids:
            self.assign_task_to_sprint(task_id, sprint_id)
        return self.store.find_by_id(SPRINTS, sprint_id)

    def remove_tasks(self, sprint_id: str, task_ids: List[str]) -> Document:
        """Pull tasks from a sprint and clear their sprint reference where it points here."""
        require_id(sprint_id, "sprint ID")
        for task_id in task_ids:
            require_id(task_id, "task ID")
        if self.store.find_by_id(SPRINTS, sprint_id) is None:
            raise NotFound("Sprint not found")

        sprint = self._change_members(sprint_id, remove=task_ids)
        now = self.clock()
        for task in self.store.find(TASKS, {"id": {"$in": list(task_ids)}, "sprint": sprint_id}):
            self.store.update(TASKS, task["id"], {"sprint": None, "updated": now})
        return sprint

    def remove_task_everywhere(self, task_id: str) -> Dict[str, Any]:
        """
        Pull a task from every sprint's task set.

        Used after deletion. Failures are logged and reported, never raised.
        """
        try:
            sprint_ids = self.sprint_ids_containing(task_id)
            for sprint_id in sprint_ids:
                self._change_members(sprint_id, remove=[task_id])
        except StorageFailure as e:
            logger.error(f"Failed to remove task {task_id} from sprints: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "sprints": sprint_ids}
