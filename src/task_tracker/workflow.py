"""
Workflow Column Registry

Owns the ordered board columns of a project. Column order values are kept as
a contiguous 0-based sequence after every mutation, and a column whose name is
still used as a task status cannot be removed.
"""

import logging
from typing import Any, Callable, Iterable, List, Union

from .errors import ColumnInUse, InvalidOperation, NotFound, ValidationError
from .ids import new_id, require_id
from .models import FALLBACK_STATUSES, BoardColumn, Project, utcnow
from .store import PROJECTS, TASKS, EntityStore

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down")


def _renumber(columns: Iterable[BoardColumn]) -> List[BoardColumn]:
    return [BoardColumn(id=column.id, name=column.name, order=index)
            for index, column in enumerate(columns)]


class WorkflowRegistry:
    """Column mutations for a project's board."""

    def __init__(self, store: EntityStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def _load_project(self, project_id: str) -> Project:
        require_id(project_id, "project ID")
        document = self.store.find_by_id(PROJECTS, project_id)
        if document is None:
            raise NotFound("Project not found")
        return Project.model_validate(document)

    def _save(self, project: Project, columns: List[BoardColumn]) -> List[BoardColumn]:
        self.store.update(PROJECTS, project.id, {
            "board_columns": [column.model_dump() for column in columns],
            "updated": self.clock(),
        })
        return columns

    def _ordered(self, project: Project) -> List[BoardColumn]:
        return sorted(project.board_columns, key=lambda column: column.order)

    def _statuses_in_use(self, project_id: str) -> set:
        return {task.get("status") for task in self.store.find(TASKS, {"project": project_id})}

    def list_columns(self, project_id: str) -> List[BoardColumn]:
        return self._ordered(self._load_project(project_id))

    def list_statuses(self, project_id: str) -> List[str]:
        """Column names in board order, or the fallback vocabulary for a board with no columns."""
        names = self._load_project(project_id).column_names()
        return names or list(FALLBACK_STATUSES)

    def add_column(self, project_id: str, name: str) -> BoardColumn:
        """Append a column at the next order index."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Column name is required")

        project = self._load_project(project_id)
        columns = self._ordered(project)
        column = BoardColumn(id=new_id(), name=name.strip(), order=len(columns))
        self._save(project, _renumber(columns + [column]))
        logger.info(f"Added column '{column.name}' to project {project_id}")
        return column

    def remove_column(self, project_id: str, column_id: str) -> List[BoardColumn]:
        """
        Remove a column and renumber the rest, preserving their relative order.

        Raises:
            NotFound: If the column is not on the board
            ColumnInUse: If any task of the project has the column's name as status
        """
        project = self._load_project(project_id)
        columns = self._ordered(project)
        target = next((column for column in columns if column.id == column_id), None)
        if target is None:
            raise NotFound("Column not found")

        remaining = [column for column in columns if column.id != column_id]
        if target.name not in {column.name for column in remaining} \
                and target.name in self._statuses_in_use(project.id):
            raise ColumnInUse(
                f"Column '{target.name}' is used as a task status and cannot be removed",
                column=target.name,
            )

        result = self._save(project, _renumber(remaining))
        logger.info(f"Removed column '{target.name}' from project {project_id}")
        return result

    def reorder(self, project_id: str, column_id: str, direction: str) -> List[BoardColumn]:
        """Swap a column with its neighbour toward index 0 ("up") or the end ("down")."""
        if direction not in DIRECTIONS:
            raise ValidationError("Valid direction (up or down) is required")

        project = self._load_project(project_id)
        columns = self._ordered(project)
        index = next((i for i, column in enumerate(columns) if column.id == column_id), None)
        if index is None:
            raise NotFound("Column not found")

        neighbour = index - 1 if direction == "up" else index + 1
        if neighbour < 0 or neighbour >= len(columns):
            raise InvalidOperation(f"Cannot move column {direction}")

        columns[index], columns[neighbour] = columns[neighbour], columns[index]
        return self._save(project, _renumber(columns))

    def replace_all(self, project_id: str,
                    columns: List[Union[str, BoardColumn, dict]]) -> List[BoardColumn]:
        """
        Replace the whole board. Order is re-derived from list position and
        duplicate names are allowed.

        Raises:
            ValidationError: If an entry has no usable name
            ColumnInUse: If a status in use would no longer name a column
        """
        if not isinstance(columns, list):
            raise ValidationError("Board columns must be a list")

        project = self._load_project(project_id)
        replacement = [self._coerce(entry, position) for position, entry in enumerate(columns)]

        names = {column.name for column in replacement}
        orphaned = sorted(status for status in self._statuses_in_use(project.id)
                          if status not in names)
        if orphaned:
            raise ColumnInUse(
                "Board columns in use by tasks cannot be removed: " + ", ".join(orphaned),
                columns=orphaned,
            )

        result = self._save(project, replacement)
        logger.info(f"Replaced board of project {project_id} with {len(result)} columns")
        return result

    @staticmethod
    def _coerce(entry: Any, position: int) -> BoardColumn:
        if isinstance(entry, BoardColumn):
            name, column_id = entry.name, entry.id
        elif isinstance(entry, dict):
            name, column_id = entry.get("name"), entry.get("id")
        else:
            name, column_id = entry, None

        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Column at position {position} has no name")
        return BoardColumn(id=column_id or new_id(), name=name.strip(), order=position)
