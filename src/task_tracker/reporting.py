"""
Reporting/Aggregation Engine

Read-only views over committed project state: status, priority and type
breakdowns, team workload, epic progress, burndown and sprint statistics.
Nothing in this module writes to the store.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List

from .errors import NotFound
from .ids import require_id
from .models import FALLBACK_STATUSES, TERMINAL_STATUSES, Priority, Project, TaskType
from .store import PROJECTS, SPRINTS, TASKS, USERS, Document, EntityStore


def _round_half_up_percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (2 * whole)


def _day(value: Any) -> date:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value.date() if isinstance(value, datetime) else value


class ReportingEngine:

    def __init__(self, store: EntityStore):
        self.store = store

    def _project(self, project_id: str) -> Project:
        require_id(project_id, "project ID")
        document = self.store.find_by_id(PROJECTS, project_id)
        if document is None:
            raise NotFound("Project not found")
        return Project.model_validate(document)

    def _tasks(self, project_id: str) -> List[Document]:
        self._project(project_id)
        return self.store.find(TASKS, {"project": project_id})

    def status_breakdown(self, project_id: str) -> Dict[str, Any]:
        status_counts: Dict[str, int] = {}
        tasks = self._tasks(project_id)
        for task in tasks:
            status_counts[task["status"]] = status_counts.get(task["status"], 0) + 1
        return {"total": len(tasks), "status_counts": status_counts}

    def priority_breakdown(self, project_id: str) -> Dict[str, int]:
        """Counts per priority; values that match no known priority, even ignoring case, are dropped."""
        counts = {priority.value: 0 for priority in Priority}
        for task in self._tasks(project_id):
            priority = task.get("priority")
            if not isinstance(priority, str):
                continue
            key = priority.lower()
            if key in counts:
                counts[key] += 1
        return counts

    def type_breakdown(self, project_id: str) -> Dict[str, int]:
        counts = {task_type.value: 0 for task_type in TaskType}
        for task in self._tasks(project_id):
            counts[task["type"]] = counts.get(task["type"], 0) + 1
        return counts

    def team_workload(self, project_id: str) -> List[Dict[str, Any]]:
        workload: Dict[str, Dict[str, Any]] = {}
        for task in self._tasks(project_id):
            assignee = task.get("assignee")
            if not assignee:
                continue

            if assignee not in workload:
                user = self.store.find_by_id(USERS, assignee) or {}
                name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()
                workload[assignee] = {
                    "user": {
                        "id": assignee,
                        "name": name or "Unknown User",
                        "email": user.get("email"),
                    },
                    "task_count": 0,
                    "status_breakdown": {status: 0 for status in FALLBACK_STATUSES},
                }

            entry = workload[assignee]
            entry["task_count"] += 1
            entry["status_breakdown"][task["status"]] = entry["status_breakdown"].get(task["status"], 0) + 1

        return list(workload.values())

    def epic_progress(self, project_id: str) -> List[Dict[str, Any]]:
        """Completion of each epic, measured over its direct children."""
        self._project(project_id)
        epics = self.store.find(TASKS, {"project": project_id, "type": TaskType.EPIC.value})

        progress = []
        for epic in epics:
            children = self.store.find(TASKS, {"project": project_id, "parent_task": epic["id"]})
            statuses = [child.get("status") for child in children]
            done = statuses.count("Done")
            progress.append({
                "id": epic["id"],
                "name": epic["name"],
                "description": epic.get("description"),
                "total_tasks": len(children),
                "todo_count": statuses.count("To Do"),
                "in_progress_count": statuses.count("In Progress"),
                "testing_count": statuses.count("Testing"),
                "done_count": done,
                "completion_percentage": _round_half_up_percentage(done, len(children)),
            })
        return progress

    def burndown(self, project_id: str) -> Dict[str, Any]:
        """
        Remaining story points for each day from project start to end, inclusive.

        Points of tasks that reached a terminal status are subtracted on the
        UTC day they were completed. The series is not clamped at zero.
        """
        project = self._project(project_id)
        tasks = self.store.find(TASKS, {"project": project_id})
        total_points = sum(task.get("story_points") or 0 for task in tasks)

        points_by_day: Dict[date, int] = {}
        for task in tasks:
            if task.get("status") in TERMINAL_STATUSES and task.get("completed_at"):
                day = _day(task["completed_at"])
                points_by_day[day] = points_by_day.get(day, 0) + (task.get("story_points") or 0)

        series = []
        remaining = total_points
        current, last = project.start_date.date(), project.end_date.date()
        while current <= last:
            remaining -= points_by_day.get(current, 0)
            series.append({"date": current.isoformat(), "remaining_points": remaining})
            current += timedelta(days=1)

        return {"total_points": total_points, "burndown": series}

    def sprint_stats(self, sprint_id: str) -> Dict[str, Any]:
        require_id(sprint_id, "sprint ID")
        sprint = self.store.find_by_id(SPRINTS, sprint_id)
        if sprint is None:
            raise NotFound("Sprint not found")

        members = sprint.get("tasks") or []
        tasks = self.store.find(TASKS, {"id": {"$in": members}}) if members else []

        tasks_by_status: Dict[str, int] = {}
        for task in tasks:
            tasks_by_status[task["status"]] = tasks_by_status.get(task["status"], 0) + 1

        completed = [task for task in tasks if task["status"] in TERMINAL_STATUSES]
        total_tasks = len(tasks)
        return {
            "tasks_by_status": tasks_by_status,
            "total_tasks": total_tasks,
            "completed_tasks": len(completed),
            "total_points": sum(task.get("story_points") or 0 for task in tasks),
            "completed_points": sum(task.get("story_points") or 0 for task in completed),
            "progress_percentage": (len(completed) / total_tasks * 100) if total_tasks else 0,
        }
