"""
Task Hierarchy Validator

Enforces the two-level type hierarchy (epic -> task/story/bug -> subtask) and
the rule that a task's status names one of its project's board columns.
"""

from typing import List, Optional

from .errors import HierarchyViolation, NotFound, UnknownStatus
from .ids import require_id
from .models import DEFAULT_STATUS, Project, TaskType
from .store import TASKS, EntityStore


class HierarchyValidator:

    def __init__(self, store: EntityStore):
        self.store = store

    def check(self, task_type, parent_task_id: Optional[str], project_id: str,
              task_id: Optional[str] = None) -> Optional[str]:
        """
        Validate a (type, parent) pair and return the effective parent id.

        Epics never keep a parent: the parent is cleared rather than rejected.

        Raises:
            HierarchyViolation: If the combination breaks the type hierarchy
            NotFound: If the referenced parent does not exist
        """
        task_type = TaskType(task_type)

        if task_type == TaskType.EPIC:
            return None

        if not parent_task_id:
            if task_type == TaskType.SUBTASK:
                raise HierarchyViolation("Subtasks must have a parent task")
            return None

        require_id(parent_task_id, "parent task ID")
        if task_id is not None and parent_task_id == task_id:
            raise HierarchyViolation("A task cannot be its own parent")

        parent = self.store.find_by_id(TASKS, parent_task_id)
        if parent is None:
            raise NotFound("Parent task not found")

        if parent.get("project") != project_id:
            raise HierarchyViolation("Parent task must belong to the same project")

        parent_type = parent.get("type")
        if task_type in (TaskType.TASK, TaskType.STORY) and parent_type != TaskType.EPIC.value:
            raise HierarchyViolation("Tasks and stories must have epics as parents")
        if task_type == TaskType.SUBTASK and parent_type != TaskType.TASK.value:
            raise HierarchyViolation("Subtasks must have tasks as parents")

        if task_id is not None:
            self._check_ancestry(parent, task_id)

        return parent_task_id

    def _check_ancestry(self, parent: dict, task_id: str) -> None:
        # Bugs may nest under anything, so walk up to rule out cycles
        seen = set()
        ancestor = parent
        while ancestor is not None and ancestor["id"] not in seen:
            if ancestor["id"] == task_id:
                raise HierarchyViolation("Parent assignment would create a cycle")
            seen.add(ancestor["id"])
            next_id = ancestor.get("parent_task")
            ancestor = self.store.find_by_id(TASKS, next_id) if next_id else None


# Status checks against a project's board


def _column_names(project: Project) -> List[str]:
    return project.column_names()


def is_valid_status(project: Project, status: Optional[str]) -> bool:
    """Exact, case-sensitive match against the project's column names."""
    return status is not None and status in _column_names(project)


def resolve_create_status(project: Project, status: Optional[str]) -> str:
    """
    Pick the status a new task starts in.

    The requested status (default "To Do") is used when it names a column,
    otherwise the first column. A board with no columns rejects creation.
    """
    names = _column_names(project)
    candidate = status or DEFAULT_STATUS
    if candidate not in names:
        candidate = names[0] if names else DEFAULT_STATUS
    if candidate not in names:
        raise UnknownStatus(candidate, names)
    return candidate


def require_status(project: Project, status: Optional[str]) -> str:
    if not is_valid_status(project, status):
        raise UnknownStatus(status, _column_names(project))
    return status
