"""
Tests for the Reporting/Aggregation Engine.

Tests cover:
- Status, priority and type breakdowns
- Team workload per assignee
- Epic completion percentages with half-up rounding
- Daily burndown series over the project range
- Sprint statistics
"""

from datetime import datetime, timezone

import pytest

from task_tracker.errors import NotFound, ValidationError
from task_tracker.store import TASKS


class TestBreakdowns:

    def test_status_breakdown(self, service, project, make_task):
        make_task("One", status="Done")
        make_task("Two", status="Done")
        make_task("Three", status="In Progress")

        assert service.reports.status_breakdown(project["id"]) == {
            "total": 3,
            "status_counts": {"Done": 2, "In Progress": 1},
        }

    def test_priority_breakdown_ignores_case_and_drops_unknown(self, service, project, make_task, alice):
        make_task("One", priority="high")
        make_task("Two", priority="low")
        for priority in ("HIGH", "Critical", "urgent"):
            service.store.create(TASKS, {
                "name": f"Imported {priority}", "project": project["id"], "type": "task",
                "status": "To Do", "priority": priority, "assignee": alice["id"],
            })

        assert service.reports.priority_breakdown(project["id"]) == {
            "low": 1, "medium": 0, "high": 2, "critical": 1,
        }

    def test_type_breakdown_is_seeded_with_every_type(self, service, project, make_task):
        epic = make_task("Billing", type="epic")
        make_task("Invoices", parent_task=epic["id"])
        make_task("Crash", type="bug")

        assert service.reports.type_breakdown(project["id"]) == {
            "epic": 1, "task": 1, "subtask": 0, "story": 0, "bug": 1,
        }

    def test_unknown_project(self, service):
        with pytest.raises(NotFound):
            service.reports.status_breakdown("0" * 32)
        with pytest.raises(ValidationError):
            service.reports.type_breakdown("nope")


class TestTeamWorkload:

    def test_workload_per_assignee(self, service, project, make_task, alice, bob):
        make_task("One", status="Done")
        make_task("Two", status="In Review")
        make_task("Three", assignee=bob["id"])

        workload = {item["user"]["id"]: item for item in service.reports.team_workload(project["id"])}

        assert workload[alice["id"]]["user"] == {
            "id": alice["id"], "name": "Alice Smith", "email": "alice@example.com",
        }
        assert workload[alice["id"]]["task_count"] == 2
        assert workload[alice["id"]]["status_breakdown"] == {
            "To Do": 0, "In Progress": 0, "Testing": 0, "Done": 1, "In Review": 1,
        }
        assert workload[bob["id"]]["task_count"] == 1
        assert workload[bob["id"]]["status_breakdown"]["To Do"] == 1

    def test_empty_project_has_no_workload(self, service, project):
        assert service.reports.team_workload(project["id"]) == []


class TestEpicProgress:

    def progress_for(self, service, project, epic):
        return next(item for item in service.reports.epic_progress(project["id"]) if item["id"] == epic["id"])

    def test_one_of_eight_done_rounds_to_thirteen(self, service, project, make_task):
        epic = make_task("Billing", type="epic")
        for index in range(8):
            make_task(f"Child {index}", parent_task=epic["id"], status="Done" if index == 0 else "To Do")

        progress = self.progress_for(service, project, epic)
        assert progress["total_tasks"] == 8
        assert progress["done_count"] == 1
        assert progress["todo_count"] == 7
        assert progress["completion_percentage"] == 13

    @pytest.mark.parametrize("done,expected", [(1, 33), (2, 67), (3, 100)])
    def test_thirds_round_half_up(self, service, project, make_task, done, expected):
        epic = make_task("Billing", type="epic")
        for index in range(3):
            make_task(f"Child {index}", parent_task=epic["id"], status="Done" if index < done else "In Progress")

        assert self.progress_for(service, project, epic)["completion_percentage"] == expected

    def test_epic_without_children(self, service, project, make_task):
        epic = make_task("Billing", type="epic")
        progress = self.progress_for(service, project, epic)

        assert progress["total_tasks"] == 0
        assert progress["completion_percentage"] == 0
        assert progress["description"] == "Billing description"

    def test_counts_per_status(self, service, project, make_task):
        service.workflow.add_column(project["id"], "Testing")
        epic = make_task("Billing", type="epic")
        make_task("A", parent_task=epic["id"], status="In Progress")
        make_task("B", parent_task=epic["id"], status="Testing")
        make_task("C", parent_task=epic["id"], status="In Review")

        progress = self.progress_for(service, project, epic)
        assert (progress["todo_count"], progress["in_progress_count"],
                progress["testing_count"], progress["done_count"]) == (0, 1, 1, 0)
        assert progress["total_tasks"] == 3


class TestBurndown:

    def test_daily_series_subtracts_completed_points(self, service, project, make_task, clock):
        first = make_task("First", story_points=5)
        second = make_task("Second", story_points=3)
        make_task("Third", story_points=2)

        clock.set(datetime(2026, 3, 3, 15, 30, tzinfo=timezone.utc))
        service.update_task(None, first["id"], {"status": "Done"})
        clock.set(datetime(2026, 3, 5, 23, 59, tzinfo=timezone.utc))
        service.update_task(None, second["id"], {"status": "Done"})

        report = service.reports.burndown(project["id"])

        assert report["total_points"] == 10
        assert len(report["burndown"]) == 10
        assert report["burndown"][0] == {"date": "2026-03-01", "remaining_points": 10}
        assert [day["remaining_points"] for day in report["burndown"]] == [10, 10, 5, 5, 2, 2, 2, 2, 2, 2]
        assert report["burndown"][-1]["date"] == "2026-03-10"

    def test_reopened_task_is_not_subtracted(self, service, project, make_task):
        task = make_task("First", story_points=4)
        service.update_task(None, task["id"], {"status": "Done"})
        service.update_task(None, task["id"], {"status": "In Progress"})

        series = service.reports.burndown(project["id"])["burndown"]
        assert {day["remaining_points"] for day in series} == {4}

    def test_end_before_start_gives_empty_series(self, service, project, make_task):
        make_task("First", story_points=4)
        service.update_project(project["id"], {"start_date": "2026-03-20"})

        assert service.reports.burndown(project["id"]) == {"total_points": 4, "burndown": []}


class TestSprintStats:

    def test_stats(self, service, make_task, make_sprint):
        sprint = make_sprint()
        make_task("One", status="Done", story_points=5, sprint=sprint["id"])
        make_task("Two", status="In Progress", story_points=3, sprint=sprint["id"])
        make_task("Three", story_points=2, sprint=sprint["id"])
        make_task("Outside", status="Done", story_points=8)

        stats = service.reports.sprint_stats(sprint["id"])

        assert stats["tasks_by_status"] == {"Done": 1, "In Progress": 1, "To Do": 1}
        assert (stats["total_tasks"], stats["completed_tasks"]) == (3, 1)
        assert (stats["total_points"], stats["completed_points"]) == (10, 5)
        assert stats["progress_percentage"] == pytest.approx(100 / 3)

    def test_empty_sprint(self, service, make_sprint):
        stats = service.reports.sprint_stats(make_sprint()["id"])
        assert stats["total_tasks"] == 0
        assert stats["progress_percentage"] == 0

    def test_missing_sprint(self, service):
        with pytest.raises(NotFound):
            service.reports.sprint_stats("0" * 32)
