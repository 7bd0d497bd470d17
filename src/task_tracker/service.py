"""
Tracker Service

Orchestration layer behind every mutation. A task mutation runs its steps in a
fixed order: hierarchy validation, status validation, persistence, sprint
aggregate recomputation, activity logging. The last two are best-effort and
report failures through logged result dicts.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from .activity import ActivityLog
from .errors import (
    HierarchyViolation, InvalidOperation, NotFound, StorageFailure, ValidationError,
)
from .hierarchy import HierarchyValidator, require_status, resolve_create_status
from .ids import require_id
from .models import (
    DEFAULT_BOARD_COLUMNS, ActivityAction, BoardColumn, CommentRequest, Project,
    ProjectCreateRequest, ProjectUpdateRequest, Sprint, SprintCreateRequest,
    SprintStatus, SprintUpdateRequest, Task, TaskCreateRequest, TaskUpdateRequest,
    User, UserCreateRequest, UserUpdateRequest, default_story_points, utcnow,
)
from .notifications import NotificationSender, NullNotificationSender
from .reporting import ReportingEngine
from .sprints import SprintTracker
from .store import ASCENDING, DESCENDING, PROJECTS, SPRINTS, TASKS, USERS, Document, EntityStore
from .workflow import WorkflowRegistry

logger = logging.getLogger(__name__)

RequestModel = TypeVar("RequestModel", bound=BaseModel)


def parse_request(model: Type[RequestModel], data: Any) -> RequestModel:
    """Validate input for shape, turning schema errors into ValidationError."""
    if isinstance(data, model):
        return data
    if data is None:
        data = {}
    try:
        return model.model_validate(data)
    except SchemaError as e:
        errors = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            errors.append(f"{location}: {error['msg']}" if location else error["msg"])
        raise ValidationError("Invalid input", errors=errors)


def _action_for(field: str) -> ActivityAction:
    if field == "status":
        return ActivityAction.CHANGED_STATUS
    if field == "assignee":
        return ActivityAction.ASSIGNED
    return ActivityAction.UPDATED


class TrackerService:
    """
    Entry point for every tracker operation.

    Built explicitly from a store, an optional notification sender and an
    optional clock; the components it drives share the same store.
    """

    def __init__(self, store: EntityStore, notifier: Optional[NotificationSender] = None,
                 clock: Optional[Callable] = None):
        self.store = store
        self.clock = clock or utcnow
        self.notifier = notifier or NullNotificationSender()
        self.workflow = WorkflowRegistry(store, self.clock)
        self.hierarchy = HierarchyValidator(store)
        self.sprints = SprintTracker(store, self.clock)
        self.activity = ActivityLog(store, self.clock)
        self.reports = ReportingEngine(store)

    # Helpers

    def _get(self, kind: str, entity_id: Any, label: str) -> Document:
        require_id(entity_id, f"{label.lower()} ID")
        document = self.store.find_by_id(kind, entity_id)
        if document is None:
            raise NotFound(f"{label} not found")
        return document

    def _require_users(self, user_ids: List[str], label: str = "User") -> None:
        for user_id in user_ids:
            self._get(USERS, user_id, label)

    def _resolve_actor(self, actor: Optional[str], task: Document) -> str:
        if actor:
            return require_id(actor, "actor ID")
        fallback = task.get("assignee") or task.get("reporter")
        if not fallback:
            raise ValidationError("No valid user ID for activity logging")
        return fallback

    def _log(self, actor: str, action: ActivityAction, task: Document, **fields) -> Dict[str, Any]:
        result = self.activity.record(actor, action, task["id"], task["project"], **fields)
        if not result["success"]:
            logger.warning(f"Activity '{action.value}' for task {task['id']} not recorded: {result['error']}")
        return result

    def _notify_assignment(self, task: Document) -> None:
        try:
            user = self.store.find_by_id(USERS, task["assignee"])
            if not user or not user.get("email"):
                return
            result = self.notifier.send(
                user["email"],
                f"New task assigned: {task['name']}",
                f"Hi {User.model_validate(user).full_name},\n\n"
                f"You have been assigned the task '{task['name']}' (status: {task['status']}).",
            )
        except Exception as e:
            logger.warning(f"Assignment notification for task {task['id']} failed: {e}")
            return
        if not result.get("success"):
            logger.warning(f"Assignment notification for task {task['id']} failed: {result.get('error')}")

    def _check_task_name(self, project_id: str, name: str, task_id: Optional[str] = None) -> None:
        query: Dict[str, Any] = {"project": project_id, "name": name}
        if task_id:
            query["id"] = {"$ne": task_id}
        if self.store.exists(TASKS, query):
            raise InvalidOperation(f"A task named '{name}' already exists in this project")

    # Users

    def create_user(self, first_name: str, last_name: str, email: str, role: str = "developer") -> Document:
        request = parse_request(UserCreateRequest, {
            "first_name": first_name, "last_name": last_name, "email": email, "role": role,
        })
        if self.store.exists(USERS, {"email": request.email}):
            raise InvalidOperation("A user with this email already exists")

        now = self.clock()
        user = User(**request.model_dump(), created=now, updated=now)
        document = self.store.create(USERS, user.to_document())
        logger.info(f"Created user {document['id']} ({request.email})")
        return document

    def get_user(self, user_id: str) -> Document:
        return self._get(USERS, user_id, "User")

    def find_user_by_email(self, email: str) -> Optional[Document]:
        users = self.store.find(USERS, {"email": email.strip().lower()}, limit=1)
        return users[0] if users else None

    def list_users(self) -> List[Document]:
        return self.store.find(USERS, sort=[("last_name", ASCENDING), ("first_name", ASCENDING)])

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> Document:
        request = parse_request(UserUpdateRequest, patch)
        self._get(USERS, user_id, "User")

        changes = request.model_dump(mode="json", exclude_unset=True)
        if "email" in changes and self.store.exists(
                USERS, {"email": changes["email"], "id": {"$ne": user_id}}):
            raise InvalidOperation("A user with this email already exists")

        changes["updated"] = self.clock()
        return self.store.update(USERS, user_id, changes)

    def delete_user(self, user_id: str) -> Document:
        """Delete a user that no task or project refers to."""
        user = self._get(USERS, user_id, "User")
        if (self.store.exists(TASKS, {"assignee": user_id})
                or self.store.exists(TASKS, {"reporter": user_id})
                or self.store.exists(PROJECTS, {"lead": user_id})):
            raise InvalidOperation("Cannot delete a user who is still an assignee, reporter or project lead")
        self.store.delete(USERS, user_id)
        logger.info(f"Deleted user {user_id}")
        return user

    # Projects

    def create_project(self, name: str, key: str, end_date: Any, start_date: Any = None,
                       board_columns: Optional[List[Any]] = None, description: Optional[str] = None,
                       status: str = "planning", priority: str = "medium",
                       lead: Optional[str] = None, type: str = "development",
                       category: str = "software", assignees: Optional[List[str]] = None) -> Document:
        """
        Create a project. With no board columns the default board
        (To Do, In Progress, In Review, Done) is used.
        """
        request = parse_request(ProjectCreateRequest, {
            "name": name, "key": key, "end_date": end_date, "start_date": start_date,
            "board_columns": board_columns, "description": description,
            "status": status, "priority": priority, "lead": lead,
            "type": type, "category": category, "assignees": assignees or [],
        })
        if self.store.exists(PROJECTS, {"key": request.key}):
            raise InvalidOperation(f"Project key '{request.key}' is already in use")
        if request.lead:
            self._get(USERS, request.lead, "Lead")
        self._require_users(request.assignees, "Assignee")

        names = [column.name for column in request.board_columns or []] or DEFAULT_BOARD_COLUMNS
        now = self.clock()
        project = Project(
            name=request.name,
            key=request.key,
            type=request.type,
            category=request.category,
            description=request.description,
            status=request.status,
            priority=request.priority,
            board_columns=[BoardColumn(name=column, order=index) for index, column in enumerate(names)],
            start_date=request.start_date or now,
            end_date=request.end_date,
            lead=request.lead,
            assignees=list(dict.fromkeys(request.assignees)),
            created=now,
            updated=now,
        )
        document = self.store.create(PROJECTS, project.to_document())
        logger.info(f"Created project {document['id']} ({request.key}) with {len(names)} columns")
        return document

    def get_project(self, project_id: str) -> Document:
        return self._get(PROJECTS, project_id, "Project")

    def list_projects(self) -> List[Document]:
        return self.store.find(PROJECTS, sort=[("created", DESCENDING)])

    def update_project(self, project_id: str, patch: Dict[str, Any]) -> Document:
        """Patch project fields. Board columns change only through the workflow registry."""
        request = parse_request(ProjectUpdateRequest, patch)
        self._get(PROJECTS, project_id, "Project")

        changes = request.model_dump(mode="json", exclude_unset=True)
        if "key" in changes and self.store.exists(
                PROJECTS, {"key": changes["key"], "id": {"$ne": project_id}}):
            raise InvalidOperation(f"Project key '{changes['key']}' is already in use")
        if changes.get("lead"):
            self._get(USERS, changes["lead"], "Lead")
        if "assignees" in changes:
            self._require_users(changes["assignees"], "Assignee")
            changes["assignees"] = list(dict.fromkeys(changes["assignees"]))

        changes["updated"] = self.clock()
        return self.store.update(PROJECTS, project_id, changes)

    def delete_project(self, project_id: str) -> Document:
        project = self._get(PROJECTS, project_id, "Project")
        if self.store.exists(TASKS, {"project": project_id}) or self.store.exists(SPRINTS, {"project": project_id}):
            raise InvalidOperation("Cannot delete a project that still has tasks or sprints")
        self.store.delete(PROJECTS, project_id)
        logger.info(f"Deleted project {project_id}")
        return project

    # Tasks

    def create_task(self, actor: Optional[str], data: Dict[str, Any]) -> Document:
        """
        Create a task.

        Hierarchy and status are validated before anything is written. Story
        points default by type when unset or zero, and an unknown status falls
        back to the project's first column.
        """
        request = parse_request(TaskCreateRequest, data)
        project = Project.model_validate(self._get(PROJECTS, request.project, "Project"))
        self._get(USERS, request.assignee, "Assignee")
        if request.reporter:
            self._get(USERS, request.reporter, "Reporter")
        self._require_users(request.watchers, "Watcher")
        actor = require_id(actor, "actor ID") if actor else request.assignee

        parent_task = self.hierarchy.check(request.type, request.parent_task, project.id)
        status = resolve_create_status(project, request.status)
        if request.sprint:
            self.sprints.check_assignment({"project": project.id}, request.sprint)
        self._check_task_name(project.id, request.name)

        now = self.clock()
        task = Task(
            name=request.name,
            description=request.description,
            type=request.type,
            status=status,
            priority=request.priority,
            project=project.id,
            parent_task=parent_task,
            assignee=request.assignee,
            reporter=request.reporter,
            story_points=request.story_points or default_story_points(request.type),
            due_date=request.due_date,
            time_spent=request.time_spent,
            time_remaining=request.time_remaining,
            watchers=list(dict.fromkeys(request.watchers)),
            created=now,
            updated=now,
            **SprintTracker.completion_patch(None, status, None, now),
        )
        document = self.store.create(TASKS, task.to_document())
        logger.info(f"Created {task.type.value} {document['id']} in project {project.id}")

        if request.sprint:
            document = self.sprints.assign_task_to_sprint(document["id"], request.sprint)

        self._log(actor, ActivityAction.CREATED, document)
        self._notify_assignment(document)
        return document

    def get_task(self, task_id: str) -> Document:
        return self._get(TASKS, task_id, "Task")

    def list_tasks(self, project_id: Optional[str] = None) -> List[Document]:
        query = {}
        if project_id is not None:
            query["project"] = require_id(project_id, "project ID")
        return self.store.find(TASKS, query, sort=[("created", DESCENDING)])

    def update_task(self, actor: Optional[str], task_id: str, patch: Dict[str, Any]) -> Document:
        """
        Apply a field-level patch to a task.

        Type or parent changes re-run the hierarchy check, a status change is
        checked against the board. One activity entry is logged per changed
        field.
        """
        request = parse_request(TaskUpdateRequest, patch)
        existing = self._get(TASKS, task_id, "Task")
        actor = self._resolve_actor(actor, existing)

        requested = request.model_dump(mode="json", exclude_unset=True)
        changed = {field: value for field, value in requested.items() if existing.get(field) != value}

        if "story_points" in changed and not changed["story_points"]:
            changed["story_points"] = default_story_points(changed.get("type", existing["type"]))
            if changed["story_points"] == existing.get("story_points"):
                del changed["story_points"]

        if not changed:
            return existing

        now = self.clock()

        # 1. hierarchy
        if "type" in changed or "parent_task" in changed:
            if "type" in changed and self.store.exists(TASKS, {"parent_task": task_id}):
                raise HierarchyViolation("Cannot change the type of a task that has child tasks")
            parent_task = self.hierarchy.check(
                changed.get("type", existing["type"]),
                changed.get("parent_task", existing.get("parent_task")),
                existing["project"],
                task_id,
            )
            if parent_task != existing.get("parent_task"):
                changed["parent_task"] = parent_task
            else:
                changed.pop("parent_task", None)
            if not changed:
                return existing

        # 2. status
        completion: Dict[str, Any] = {}
        if "status" in changed:
            project = Project.model_validate(self._get(PROJECTS, existing["project"], "Project"))
            require_status(project, changed["status"])
            completion = SprintTracker.completion_patch(
                existing["status"], changed["status"], existing.get("completed_at"), now)

        if "assignee" in changed:
            self._get(USERS, changed["assignee"], "Assignee")
        if changed.get("reporter"):
            self._get(USERS, changed["reporter"], "Reporter")
        if "watchers" in changed:
            self._require_users(changed["watchers"], "Watcher")
            changed["watchers"] = list(dict.fromkeys(changed["watchers"]))
        if changed.get("sprint"):
            self.sprints.check_assignment(existing, changed["sprint"])
        if "name" in changed:
            self._check_task_name(existing["project"], changed["name"], task_id)

        # 3. persistence
        write = {field: value for field, value in changed.items() if field != "sprint"}
        write.update(completion)
        write["updated"] = now
        document = self.store.update(TASKS, task_id, write)

        # 4. sprint aggregates
        if "sprint" in changed:
            document = self.sprints.assign_task_to_sprint(task_id, changed["sprint"])
        elif "status" in changed:
            result = self.sprints.recompute_for_task(task_id)
            if not result["success"]:
                logger.warning(f"Sprint counters for task {task_id} not refreshed: {result['error']}")

        # 5. activity
        for field, value in changed.items():
            self._log(actor, _action_for(field), document,
                      field_changed=field, old_value=existing.get(field), new_value=value)

        if "assignee" in changed:
            self._notify_assignment(document)

        logger.info(f"Updated task {task_id}: {', '.join(changed)}")
        return document

    def delete_task(self, actor: Optional[str], task_id: str) -> Document:
        """Delete a childless task and pull it from every sprint."""
        task = self._get(TASKS, task_id, "Task")
        if self.store.exists(TASKS, {"parent_task": task_id}):
            raise InvalidOperation("Cannot delete a task that has child tasks. Delete children first.")
        actor = self._resolve_actor(actor, task)

        self.store.delete(TASKS, task_id)

        result = self.sprints.remove_task_everywhere(task_id)
        if not result["success"]:
            logger.warning(f"Task {task_id} may remain in a sprint: {result['error']}")

        self._log(actor, ActivityAction.DELETED, task)
        logger.info(f"Deleted task {task_id}")
        return task

    def child_tasks(self, task_id: str) -> List[Document]:
        self._get(TASKS, task_id, "Task")
        return self.store.find(TASKS, {"parent_task": task_id}, sort=[("created", DESCENDING)])

    def list_epics(self, project_id: str) -> List[Document]:
        self._get(PROJECTS, project_id, "Project")
        return self.store.find(TASKS, {"project": project_id, "type": "epic"}, sort=[("created", DESCENDING)])

    def backlog(self, project_id: str) -> List[Document]:
        """Project tasks that belong to no sprint."""
        self._get(PROJECTS, project_id, "Project")
        return self.store.find(TASKS, {"project": project_id, "sprint": None}, sort=[("created", DESCENDING)])

    def move_task_to_sprint(self, actor: Optional[str], task_id: str, sprint_id: Optional[str]) -> Document:
        existing = self._get(TASKS, task_id, "Task")
        actor = self._resolve_actor(actor, existing)
        document = self.sprints.assign_task_to_sprint(task_id, sprint_id)
        if existing.get("sprint") != sprint_id:
            self._log(actor, ActivityAction.UPDATED, document,
                      field_changed="sprint", old_value=existing.get("sprint"), new_value=sprint_id)
        return document

    def add_watcher(self, actor: Optional[str], task_id: str, user_id: str) -> Document:
        task = self._get(TASKS, task_id, "Task")
        self._get(USERS, user_id, "User")
        actor = self._resolve_actor(actor, task)

        watchers = task.get("watchers") or []
        if user_id in watchers:
            return task

        document = self.store.update(TASKS, task_id, {
            "watchers": watchers + [user_id],
            "updated": self.clock(),
        })
        self._log(actor, ActivityAction.ADDED_WATCHER, document,
                  field_changed="watchers", new_value=user_id)
        return document

    def add_comment(self, actor: Optional[str], task_id: str, text: str) -> Document:
        """Record a comment as a 'commented' activity entry and return the entry."""
        request = parse_request(CommentRequest, {"text": text, "actor": actor})
        task = self._get(TASKS, task_id, "Task")
        actor = self._resolve_actor(request.actor, task)

        result = self._log(actor, ActivityAction.COMMENTED, task, details=request.text)
        if not result["success"]:
            raise StorageFailure(f"Comment not saved: {result['error']}")
        return result["entry"].to_document()

    def task_activity(self, task_id: str, limit: Optional[int] = None) -> List[Document]:
        self._get(TASKS, task_id, "Task")
        return self.activity.list_for_task(task_id, limit)

    def recent_activity(self, project_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        self._get(PROJECTS, project_id, "Project")
        return list(self.activity.list_for_project(project_id, limit))

    # Sprints

    def create_sprint(self, data: Dict[str, Any]) -> Document:
        request = parse_request(SprintCreateRequest, data)
        self._get(PROJECTS, request.project, "Project")
        if request.start_date >= request.end_date:
            raise ValidationError("Sprint start date must be before end date")
        self._require_users(request.team, "Team member")

        now = self.clock()
        sprint = Sprint(
            name=request.name,
            project=request.project,
            start_date=request.start_date,
            end_date=request.end_date,
            goal=request.goal,
            team=list(dict.fromkeys(request.team)),
            created=now,
            updated=now,
        )
        document = self.store.create(SPRINTS, sprint.to_document())
        logger.info(f"Created sprint {document['id']} in project {request.project}")
        return document

    def get_sprint(self, sprint_id: str) -> Document:
        return self._get(SPRINTS, sprint_id, "Sprint")

    def list_sprints(self, project_id: Optional[str] = None) -> List[Document]:
        query = {}
        if project_id is not None:
            query["project"] = require_id(project_id, "project ID")
        return self.store.find(SPRINTS, query, sort=[("start_date", ASCENDING)])

    def update_sprint(self, sprint_id: str, patch: Dict[str, Any]) -> Document:
        """Patch name, goal or dates; counters, membership and status are not patchable."""
        request = parse_request(SprintUpdateRequest, patch)
        sprint = Sprint.model_validate(self._get(SPRINTS, sprint_id, "Sprint"))

        start = request.start_date or sprint.start_date
        end = request.end_date or sprint.end_date
        if start >= end:
            raise ValidationError("Sprint start date must be before end date")

        changes = request.model_dump(mode="json", exclude_unset=True)
        changes["updated"] = self.clock()
        return self.store.update(SPRINTS, sprint_id, changes)

    def delete_sprint(self, sprint_id: str) -> Document:
        """Delete a sprint and return its tasks to the backlog."""
        sprint = self._get(SPRINTS, sprint_id, "Sprint")
        now = self.clock()
        with self.sprints.lock_for(sprint_id):
            for task in self.store.find(TASKS, {"sprint": sprint_id}):
                self.store.update(TASKS, task["id"], {"sprint": None, "updated": now})
            self.store.delete(SPRINTS, sprint_id)
        self.sprints.forget(sprint_id)
        logger.info(f"Deleted sprint {sprint_id}")
        return sprint

    def add_tasks_to_sprint(self, sprint_id: str, task_ids: List[str]) -> Document:
        if not task_ids:
            raise ValidationError("Please provide an array of task IDs")
        return self.sprints.add_tasks(sprint_id, task_ids)

    def remove_tasks_from_sprint(self, sprint_id: str, task_ids: List[str]) -> Document:
        if not task_ids:
            raise ValidationError("Please provide an array of task IDs")
        return self.sprints.remove_tasks(sprint_id, task_ids)

    def _transition(self, sprint_id: str, allowed_from: tuple, target: SprintStatus, message: str) -> Document:
        with self.sprints.lock_for(sprint_id):
            sprint = self._get(SPRINTS, sprint_id, "Sprint")
            if sprint["status"] not in allowed_from:
                raise InvalidOperation(message, status=sprint["status"])
            document = self.store.update(SPRINTS, sprint_id, {"status": target.value, "updated": self.clock()})
        logger.info(f"Sprint {sprint_id} is now {target.value}")
        return document

    def start_sprint(self, sprint_id: str) -> Document:
        return self._transition(sprint_id, (SprintStatus.PLANNING.value,), SprintStatus.ACTIVE,
                                "Sprint is already active or completed")

    def complete_sprint(self, sprint_id: str) -> Document:
        return self._transition(sprint_id, (SprintStatus.ACTIVE.value,), SprintStatus.COMPLETED,
                                "Only active sprints can be completed")

    def cancel_sprint(self, sprint_id: str) -> Document:
        return self._transition(sprint_id, (SprintStatus.PLANNING.value, SprintStatus.ACTIVE.value),
                                SprintStatus.CANCELLED, "Only planning or active sprints can be cancelled")

    def add_members_to_sprint(self, sprint_id: str, member_ids: List[str]) -> Document:
        if not member_ids:
            raise ValidationError("Please provide an array of member IDs")
        self._require_users(member_ids, "Member")
        with self.sprints.lock_for(sprint_id):
            sprint = self._get(SPRINTS, sprint_id, "Sprint")
            team = list(dict.fromkeys((sprint.get("team") or []) + list(member_ids)))
            return self.store.update(SPRINTS, sprint_id, {"team": team, "updated": self.clock()})

    def active_sprints(self, project_id: str) -> List[Document]:
        require_id(project_id, "project ID")
        return self.store.find(SPRINTS, {"project": project_id, "status": SprintStatus.ACTIVE.value})

    def sprint_tasks(self, sprint_id: str) -> List[Document]:
        self._get(SPRINTS, sprint_id, "Sprint")
        return self.store.find(TASKS, {"sprint": sprint_id}, sort=[("created", DESCENDING)])
