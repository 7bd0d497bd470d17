"""
Tests for the Workflow Column Registry.

Tests cover:
- Default board on project creation
- Adding, removing and renumbering columns
- Reordering with boundary rejection
- Whole-board replacement and the column-in-use policy
"""

import pytest

from task_tracker.errors import ColumnInUse, InvalidOperation, NotFound, ValidationError
from task_tracker.models import FALLBACK_STATUSES


def board(service, project):
    return [(column.name, column.order) for column in service.workflow.list_columns(project["id"])]


def column_id(service, project, name):
    return next(column.id for column in service.workflow.list_columns(project["id"]) if column.name == name)


class TestDefaultBoard:

    def test_project_without_columns_gets_default_board(self, service, project):
        assert board(service, project) == [
            ("To Do", 0), ("In Progress", 1), ("In Review", 2), ("Done", 3),
        ]

    def test_project_with_custom_columns(self, service):
        custom = service.create_project(
            name="Custom", key="cus", end_date="2026-12-31",
            board_columns=["Backlog", {"name": "Doing"}, "Shipped"],
        )
        assert board(service, custom) == [("Backlog", 0), ("Doing", 1), ("Shipped", 2)]
        assert service.workflow.list_statuses(custom["id"]) == ["Backlog", "Doing", "Shipped"]


class TestAddRemove:

    def test_add_column_appends(self, service, project, clock):
        before = service.get_project(project["id"])["updated"]
        column = service.workflow.add_column(project["id"], "  Blocked ")

        assert column.name == "Blocked"
        assert column.order == 4
        assert board(service, project)[-1] == ("Blocked", 4)
        assert service.get_project(project["id"])["updated"] > before

    def test_add_blank_column_rejected(self, service, project):
        with pytest.raises(ValidationError):
            service.workflow.add_column(project["id"], "   ")

    def test_remove_renumbers_preserving_order(self, service, project):
        columns = service.workflow.remove_column(project["id"], column_id(service, project, "In Progress"))

        assert [(column.name, column.order) for column in columns] == [
            ("To Do", 0), ("In Review", 1), ("Done", 2),
        ]
        assert board(service, project) == [("To Do", 0), ("In Review", 1), ("Done", 2)]

    def test_remove_unknown_column(self, service, project):
        with pytest.raises(NotFound):
            service.workflow.remove_column(project["id"], "f" * 32)

    def test_remove_column_in_use_rejected(self, service, project, make_task):
        make_task("Busy", status="In Review")

        with pytest.raises(ColumnInUse) as exc_info:
            service.workflow.remove_column(project["id"], column_id(service, project, "In Review"))

        assert exc_info.value.status_code == 400
        assert isinstance(exc_info.value, InvalidOperation)
        assert board(service, project) == [
            ("To Do", 0), ("In Progress", 1), ("In Review", 2), ("Done", 3),
        ]

    def test_remove_duplicate_named_column_in_use_allowed(self, service, project, make_task):
        service.workflow.replace_all(project["id"], ["To Do", "Done", "Done"])
        make_task("Finished", status="Done")
        last = service.workflow.list_columns(project["id"])[-1]

        columns = service.workflow.remove_column(project["id"], last.id)
        assert [(column.name, column.order) for column in columns] == [("To Do", 0), ("Done", 1)]

    def test_unknown_project(self, service):
        with pytest.raises(NotFound):
            service.workflow.add_column("0" * 32, "Blocked")
        with pytest.raises(ValidationError):
            service.workflow.add_column("bogus", "Blocked")


class TestReorder:

    def test_move_down(self, service, project):
        columns = service.workflow.reorder(project["id"], column_id(service, project, "To Do"), "down")
        assert [column.name for column in columns] == ["In Progress", "To Do", "In Review", "Done"]
        assert [column.order for column in columns] == [0, 1, 2, 3]

    def test_move_up(self, service, project):
        service.workflow.reorder(project["id"], column_id(service, project, "Done"), "up")
        assert board(service, project) == [
            ("To Do", 0), ("In Progress", 1), ("Done", 2), ("In Review", 3),
        ]

    def test_first_column_up_rejected(self, service, project):
        before = board(service, project)
        with pytest.raises(InvalidOperation, match="Cannot move column up"):
            service.workflow.reorder(project["id"], column_id(service, project, "To Do"), "up")
        assert board(service, project) == before

    def test_last_column_down_rejected(self, service, project):
        before = board(service, project)
        with pytest.raises(InvalidOperation, match="Cannot move column down"):
            service.workflow.reorder(project["id"], column_id(service, project, "Done"), "down")
        assert board(service, project) == before

    def test_invalid_direction(self, service, project):
        with pytest.raises(ValidationError):
            service.workflow.reorder(project["id"], column_id(service, project, "Done"), "sideways")


class TestReplaceAll:

    def test_order_follows_list_index(self, service, project):
        keep = column_id(service, project, "Done")
        columns = service.workflow.replace_all(project["id"], [{"id": keep, "name": "Done"}, "Idea", "Idea"])

        assert [(column.name, column.order) for column in columns] == [("Done", 0), ("Idea", 1), ("Idea", 2)]
        assert columns[0].id == keep
        assert columns[1].id != columns[2].id

    def test_replace_dropping_used_status_rejected(self, service, project, make_task):
        make_task("Started", status="In Progress")

        with pytest.raises(ColumnInUse) as exc_info:
            service.workflow.replace_all(project["id"], ["To Do", "Done"])

        assert exc_info.value.details["columns"] == ["In Progress"]
        assert len(board(service, project)) == 4

    def test_replace_with_blank_name_rejected(self, service, project):
        with pytest.raises(ValidationError):
            service.workflow.replace_all(project["id"], ["To Do", ""])

    def test_empty_board_falls_back_to_default_vocabulary(self, service, project):
        service.workflow.replace_all(project["id"], [])
        assert service.workflow.list_columns(project["id"]) == []
        assert service.workflow.list_statuses(project["id"]) == FALLBACK_STATUSES
