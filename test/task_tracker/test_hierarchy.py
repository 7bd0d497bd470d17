"""
Tests for the Task Hierarchy Validator and board status checks.

Tests cover:
- Epic parent force-clear on create and update
- task/story -> epic and subtask -> task parent rules
- Same-project, self-parent and cycle rules
- Status defaulting on create and rejection of unknown statuses on update
- Identifier validation before any store lookup
"""

from unittest.mock import MagicMock

import pytest

from task_tracker.errors import HierarchyViolation, NotFound, UnknownStatus, ValidationError
from task_tracker.hierarchy import HierarchyValidator, is_valid_status, require_status, resolve_create_status
from task_tracker.models import Project


class TestParentRules:

    def test_epic_parent_is_force_cleared(self, make_task):
        other_epic = make_task("Platform", type="epic")
        epic = make_task("Billing", type="epic", parent_task=other_epic["id"])
        assert epic["parent_task"] is None

    def test_task_and_story_under_epic(self, make_task):
        epic = make_task("Billing", type="epic")
        task = make_task("Invoices", type="task", parent_task=epic["id"])
        story = make_task("Customer pays online", type="story", parent_task=epic["id"])

        assert task["parent_task"] == epic["id"]
        assert story["parent_task"] == epic["id"]

    def test_task_without_parent_allowed(self, make_task):
        assert make_task("Loose end")["parent_task"] is None

    def test_task_under_task_rejected(self, make_task):
        parent = make_task("Invoices")
        with pytest.raises(HierarchyViolation, match="epics as parents"):
            make_task("Nested", type="story", parent_task=parent["id"])

    def test_subtask_requires_parent(self, make_task):
        with pytest.raises(HierarchyViolation, match="must have a parent"):
            make_task("Orphan", type="subtask")

    def test_subtask_under_epic_rejected(self, make_task):
        epic = make_task("Billing", type="epic")
        with pytest.raises(HierarchyViolation, match="tasks as parents"):
            make_task("Too high", type="subtask", parent_task=epic["id"])

    def test_missing_parent(self, make_task):
        with pytest.raises(NotFound):
            make_task("Ghost child", type="subtask", parent_task="e" * 32)

    def test_parent_in_other_project_rejected(self, service, make_task, other_project, alice):
        foreign_epic = service.create_task(None, {
            "name": "Foreign", "description": "x", "type": "epic",
            "project": other_project["id"], "assignee": alice["id"],
        })
        with pytest.raises(HierarchyViolation, match="same project"):
            make_task("Cross", parent_task=foreign_epic["id"])

    def test_bug_may_sit_under_any_task(self, make_task):
        task = make_task("Invoices")
        bug = make_task("Rounding error", type="bug", parent_task=task["id"])
        assert bug["parent_task"] == task["id"]


class TestParentRulesOnUpdate:

    def test_changing_type_to_epic_clears_parent(self, service, make_task):
        epic = make_task("Billing", type="epic")
        task = make_task("Invoices", parent_task=epic["id"])

        updated = service.update_task(None, task["id"], {"type": "epic"})
        assert updated["type"] == "epic"
        assert updated["parent_task"] is None

    def test_reparenting_subtask_to_epic_rejected(self, service, make_task):
        epic = make_task("Billing", type="epic")
        task = make_task("Invoices", parent_task=epic["id"])
        subtask = make_task("PDF export", type="subtask", parent_task=task["id"])

        with pytest.raises(HierarchyViolation):
            service.update_task(None, subtask["id"], {"parent_task": epic["id"]})
        assert service.get_task(subtask["id"])["parent_task"] == task["id"]

    def test_clearing_subtask_parent_rejected(self, service, make_task):
        task = make_task("Invoices")
        subtask = make_task("PDF export", type="subtask", parent_task=task["id"])
        with pytest.raises(HierarchyViolation):
            service.update_task(None, subtask["id"], {"parent_task": None})

    def test_self_parent_rejected(self, service, make_task):
        bug = make_task("Rounding error", type="bug")
        with pytest.raises(HierarchyViolation, match="own parent"):
            service.update_task(None, bug["id"], {"parent_task": bug["id"]})

    def test_cycle_rejected(self, service, make_task):
        first = make_task("First bug", type="bug")
        second = make_task("Second bug", type="bug", parent_task=first["id"])
        with pytest.raises(HierarchyViolation, match="cycle"):
            service.update_task(None, first["id"], {"parent_task": second["id"]})

    def test_type_change_with_children_rejected(self, service, make_task):
        task = make_task("Invoices")
        make_task("PDF export", type="subtask", parent_task=task["id"])
        with pytest.raises(HierarchyViolation, match="child tasks"):
            service.update_task(None, task["id"], {"type": "story"})


class TestValidatorDirect:

    def test_malformed_parent_id_short_circuits(self):
        store = MagicMock()
        validator = HierarchyValidator(store)

        with pytest.raises(ValidationError):
            validator.check("task", "not-an-id", "a" * 32)
        store.find_by_id.assert_not_called()

    def test_epic_never_consults_store(self):
        store = MagicMock()
        assert HierarchyValidator(store).check("epic", "b" * 32, "a" * 32) is None
        store.find_by_id.assert_not_called()


class TestStatusRules:

    def project_with(self, *names):
        return Project(
            name="P", key="P", end_date="2026-12-31",
            board_columns=[{"name": name, "order": index} for index, name in enumerate(names)],
        )

    def test_status_match_is_exact(self):
        project = self.project_with("To Do", "Done")
        assert is_valid_status(project, "Done")
        assert not is_valid_status(project, "done")
        assert not is_valid_status(project, None)

    def test_create_defaults_to_to_do(self):
        assert resolve_create_status(self.project_with("Backlog", "To Do"), None) == "To Do"

    def test_create_falls_back_to_first_column(self):
        assert resolve_create_status(self.project_with("Backlog", "Done"), "Blocked") == "Backlog"

    def test_create_on_empty_board_rejected(self):
        with pytest.raises(UnknownStatus):
            resolve_create_status(self.project_with(), None)

    def test_require_status_lists_valid_statuses(self):
        with pytest.raises(UnknownStatus) as exc_info:
            require_status(self.project_with("To Do", "Done"), "Blocked")
        assert exc_info.value.valid_statuses == ["To Do", "Done"]
        assert exc_info.value.to_dict()["error"] == "unknown_status"

    def test_task_creation_on_empty_board_rejected(self, service, project, make_task):
        service.workflow.replace_all(project["id"], [])
        with pytest.raises(UnknownStatus):
            make_task("Nowhere to go")

    def test_update_to_unknown_status_rejected(self, service, make_task):
        task = make_task("Invoices", status="To Do")
        with pytest.raises(UnknownStatus):
            service.update_task(None, task["id"], {"status": "Blocked"})
        assert service.get_task(task["id"])["status"] == "To Do"
