"""
YAML Project Importer

Creates users, a project with its board, sprints and a nested
epic -> task/story -> subtask tree from a YAML document. Every entity goes
through TrackerService, so the hierarchy, workflow and sprint rules apply
exactly as they do for API callers.

Document layout:

    users: [{first_name, last_name, email, role}]
    project: {name, key, start_date, end_date, description, lead, board_columns}
    sprints: [{name, start_date, end_date, goal}]
    epics: [{name, ..., tasks: [{name, type, ..., subtasks: [...]}]}]
    standalone_tasks: [{name, type, ...}]

People are referenced by email and sprints by name.
"""

import logging
from typing import Any, Dict, List, Optional

import yaml

from .errors import TrackerError, ValidationError
from .service import TrackerService

logger = logging.getLogger(__name__)

_TASK_FIELDS = ("description", "status", "priority", "story_points", "due_date", "time_spent")


def _require_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValidationError(f"YAML '{key}' must be a list")
    return value


def _name_of(item: Any) -> str:
    return item.get("name", "unnamed") if isinstance(item, dict) else "invalid"


class _ProjectImport:
    """State of one import run: lookups by email and sprint name, plus statistics."""

    def __init__(self, service: TrackerService, actor: Optional[str]):
        self.service = service
        self.actor = actor
        self.users_by_email: Dict[str, str] = {}
        self.sprints_by_name: Dict[str, str] = {}
        self.project_id: Optional[str] = None
        self.stats = {
            "users_created": 0,
            "projects_created": 0,
            "sprints_created": 0,
            "tasks_created": 0,
            "errors": [],
        }

    def user_id(self, email: Optional[str]) -> Optional[str]:
        if not email:
            return None
        key = email.strip().lower()
        if key not in self.users_by_email:
            user = self.service.find_user_by_email(key)
            if user is None:
                raise ValidationError(f"Unknown user '{email}'")
            self.users_by_email[key] = user["id"]
        return self.users_by_email[key]

    def import_users(self, users: List[Any]) -> None:
        for user_data in users:
            if not isinstance(user_data, dict) or not user_data.get("email"):
                self.stats["errors"].append("User entries must be mappings with an 'email'")
                continue
            existing = self.service.find_user_by_email(user_data["email"])
            if existing is not None:
                self.users_by_email[existing["email"]] = existing["id"]
                continue
            try:
                user = self.service.create_user(
                    user_data.get("first_name", ""),
                    user_data.get("last_name", ""),
                    user_data["email"],
                    user_data.get("role", "developer"),
                )
            except TrackerError as e:
                self.stats["errors"].append(f"Failed to import user '{user_data['email']}': {e.message}")
                continue
            self.users_by_email[user["email"]] = user["id"]
            self.stats["users_created"] += 1

    def import_project(self, project_data: Any) -> None:
        if not isinstance(project_data, dict):
            raise ValidationError("YAML 'project' must be a mapping")

        project = self.service.create_project(
            name=project_data.get("name"),
            key=project_data.get("key"),
            end_date=project_data.get("end_date"),
            start_date=project_data.get("start_date"),
            board_columns=project_data.get("board_columns"),
            description=project_data.get("description"),
            status=project_data.get("status", "planning"),
            priority=project_data.get("priority", "medium"),
            lead=self.user_id(project_data.get("lead")),
            type=project_data.get("type", "development"),
            category=project_data.get("category", "software"),
        )
        self.project_id = project["id"]
        self.actor = self.actor or project.get("lead")
        self.stats["projects_created"] += 1

    def import_sprints(self, sprints: List[Any]) -> None:
        for sprint_data in sprints:
            try:
                if not isinstance(sprint_data, dict):
                    raise ValidationError("Sprint data must be a dictionary")
                sprint = self.service.create_sprint({
                    "name": sprint_data.get("name"),
                    "project": self.project_id,
                    "start_date": sprint_data.get("start_date"),
                    "end_date": sprint_data.get("end_date"),
                    "goal": sprint_data.get("goal"),
                    "team": [self.user_id(email) for email in sprint_data.get("team") or []],
                })
            except TrackerError as e:
                self.stats["errors"].append(f"Failed to import sprint '{_name_of(sprint_data)}': {e.message}")
                continue
            self.sprints_by_name[sprint["name"]] = sprint["id"]
            self.stats["sprints_created"] += 1

    def import_task(self, task_data: Any, task_type: str, parent_id: Optional[str] = None) -> None:
        """Create one task, then its children; a failed task skips its subtree."""
        try:
            if not isinstance(task_data, dict):
                raise ValidationError("Task data must be a dictionary")
            if not task_data.get("name"):
                raise ValidationError("Task must have 'name' field")

            payload = {field: task_data[field] for field in _TASK_FIELDS if field in task_data}
            payload.setdefault("description", task_data["name"])
            payload.update({
                "name": task_data["name"],
                "type": task_data.get("type", task_type),
                "project": self.project_id,
                "assignee": self.user_id(task_data.get("assignee")),
                "reporter": self.user_id(task_data.get("reporter")),
                "parent_task": parent_id,
                "watchers": [self.user_id(email) for email in task_data.get("watchers") or []],
            })

            sprint_name = task_data.get("sprint")
            if sprint_name:
                if sprint_name not in self.sprints_by_name:
                    raise ValidationError(f"Unknown sprint '{sprint_name}'")
                payload["sprint"] = self.sprints_by_name[sprint_name]

            task = self.service.create_task(self.actor, payload)
        except TrackerError as e:
            self.stats["errors"].append(f"Failed to import {task_type} '{_name_of(task_data)}': {e.message}")
            return

        self.stats["tasks_created"] += 1
        for child in _require_list(task_data, "tasks"):
            self.import_task(child, "task", task["id"])
        for child in _require_list(task_data, "subtasks"):
            self.import_task(child, "subtask", task["id"])


def import_project(service: TrackerService, data: Dict[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Import a project structure.

    Args:
        service: TrackerService every entity is created through
        data: Parsed YAML project structure
        actor: User recorded as the creator in the activity log; defaults
            to the project lead, then to each task's assignee

    Returns:
        Dict with import statistics and per-entity error messages

    Raises:
        ValidationError: For malformed structure or an invalid project
    """
    if not isinstance(data, dict):
        raise ValidationError("YAML document must contain a dictionary at root level")

    users = _require_list(data, "users")
    sprints = _require_list(data, "sprints")
    epics = _require_list(data, "epics")
    standalone = _require_list(data, "standalone_tasks")

    run = _ProjectImport(service, actor)
    run.import_users(users)
    run.import_project(data.get("project"))
    run.import_sprints(sprints)
    for epic_data in epics:
        run.import_task(epic_data, "epic")
    for task_data in standalone:
        run.import_task(task_data, "task")

    stats = run.stats
    logger.info(
        f"Imported project {run.project_id}: {stats['tasks_created']} tasks, "
        f"{stats['sprints_created']} sprints, {len(stats['errors'])} errors"
    )
    stats["project_id"] = run.project_id
    return stats


def import_project_from_file(service: TrackerService, path: str, actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Import a project from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found: {path}")
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML format: {e}")

    return import_project(service, data, actor)
