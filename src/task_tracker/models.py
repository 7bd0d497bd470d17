"""
Pydantic models for the task tracker.

Provides the persisted document models (users, projects, tasks, sprints,
activity entries), request models used to validate mutation input for shape
before any store access, and the standard success/error response helpers.
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, field_validator,
)

from .ids import is_valid_id, new_id


TERMINAL_STATUSES = ("Done", "Completed")
DEFAULT_STATUS = "To Do"
DEFAULT_BOARD_COLUMNS = ["To Do", "In Progress", "In Review", "Done"]
# Status vocabulary used when a project has no columns and by the reports
FALLBACK_STATUSES = ["To Do", "In Progress", "Testing", "Done"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_datetime(value: Any) -> Any:
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    return value


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Fixed-width ISO text keeps stored timestamps lexically sortable
UTCDateTime = Annotated[
    datetime,
    BeforeValidator(_coerce_datetime),
    AfterValidator(_ensure_utc),
    PlainSerializer(lambda v: v.isoformat(timespec="microseconds"), return_type=str, when_used="json"),
]


def _check_id(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_id(value):
        raise ValueError(f"'{value}' is not a valid identifier")
    return value


def _check_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if "@" not in value or value.startswith("@") or value.endswith("@"):
        raise ValueError("Please enter a valid email")
    return value


EntityId = Annotated[str, AfterValidator(_check_id)]


class TaskType(str, Enum):
    EPIC = "epic"
    TASK = "task"
    SUBTASK = "subtask"
    STORY = "story"
    BUG = "bug"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProjectType(str, Enum):
    DEVELOPMENT = "development"
    BUSINESS = "business"
    MARKETING = "marketing"
    RESEARCH = "research"


class ProjectCategory(str, Enum):
    SOFTWARE = "software"
    DESIGN = "design"
    HARDWARE = "hardware"
    DOCUMENTATION = "documentation"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on hold"
    COMPLETED = "completed"


class SprintStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    TESTER = "tester"


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMMENTED = "commented"
    ASSIGNED = "assigned"
    CHANGED_STATUS = "changed status"
    ATTACHED = "attached"
    ADDED_WATCHER = "added watcher"


DEFAULT_STORY_POINTS = {
    TaskType.EPIC: 3,
    TaskType.TASK: 2,
    TaskType.SUBTASK: 1,
    TaskType.STORY: 4,
    TaskType.BUG: 5,
}


def default_story_points(task_type: TaskType) -> int:
    return DEFAULT_STORY_POINTS.get(TaskType(task_type), 0)


class Document(BaseModel):
    """Base class for persisted documents."""

    id: str = Field(default_factory=new_id)

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible dict suitable for the entity store."""
        return self.model_dump(mode="json")


# Domain documents


class User(Document):
    first_name: str
    last_name: str
    email: str
    role: UserRole = UserRole.DEVELOPER
    created: UTCDateTime = Field(default_factory=utcnow)
    updated: UTCDateTime = Field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class BoardColumn(BaseModel):
    """A named, ordered workflow stage within a project."""

    id: str = Field(default_factory=new_id)
    name: str
    order: int = 0


class Project(Document):
    name: str
    key: str
    type: ProjectType = ProjectType.DEVELOPMENT
    category: ProjectCategory = ProjectCategory.SOFTWARE
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: Priority = Priority.MEDIUM
    board_columns: List[BoardColumn] = Field(default_factory=list)
    start_date: UTCDateTime = Field(default_factory=utcnow)
    end_date: UTCDateTime
    lead: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    created: UTCDateTime = Field(default_factory=utcnow)
    updated: UTCDateTime = Field(default_factory=utcnow)

    def column_names(self) -> List[str]:
        return [column.name for column in sorted(self.board_columns, key=lambda c: c.order)]


class Task(Document):
    name: str
    description: str = ""
    type: TaskType = TaskType.TASK
    status: str
    priority: Priority = Priority.MEDIUM
    project: str
    sprint: Optional[str] = None
    parent_task: Optional[str] = None
    assignee: str
    reporter: Optional[str] = None
    story_points: int = 0
    due_date: Optional[UTCDateTime] = None
    time_spent: float = 0
    time_remaining: float = 0
    completed_at: Optional[UTCDateTime] = None
    watchers: List[str] = Field(default_factory=list)
    created: UTCDateTime = Field(default_factory=utcnow)
    updated: UTCDateTime = Field(default_factory=utcnow)


class Sprint(Document):
    name: str
    project: str
    start_date: UTCDateTime
    end_date: UTCDateTime
    goal: Optional[str] = None
    status: SprintStatus = SprintStatus.PLANNING
    tasks: List[str] = Field(default_factory=list)
    team: List[str] = Field(default_factory=list)
    total_tasks: int = 0
    completed_tasks: int = 0
    created: UTCDateTime = Field(default_factory=utcnow)
    updated: UTCDateTime = Field(default_factory=utcnow)


class ActivityEntry(Document):
    """Immutable audit record of one state transition or field change."""

    user: str
    action: ActivityAction
    task: str
    project: str
    details: Optional[Any] = None
    field_changed: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: UTCDateTime = Field(default_factory=utcnow)


# Request models


class UserCreateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    role: UserRole = UserRole.DEVELOPER

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, min_length=3, max_length=254)
    role: Optional[UserRole] = None

    @field_validator("first_name", "last_name", "email", "role")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class ColumnSpec(BaseModel):
    id: Optional[str] = None
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200, description="Project name")
    key: str = Field(min_length=1, max_length=20, description="Unique project key")
    type: ProjectType = ProjectType.DEVELOPMENT
    category: ProjectCategory = ProjectCategory.SOFTWARE
    end_date: UTCDateTime
    start_date: Optional[UTCDateTime] = None
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: Priority = Priority.MEDIUM
    lead: Optional[EntityId] = None
    assignees: List[EntityId] = Field(default_factory=list)
    board_columns: Optional[List[ColumnSpec]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v):
        return _check_name(v).upper()

    @field_validator("board_columns", mode="before")
    @classmethod
    def accept_plain_names(cls, v):
        if isinstance(v, list):
            return [{"name": item} if isinstance(item, str) else item for item in v]
        return v


class ProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    key: Optional[str] = Field(None, min_length=1, max_length=20)
    type: Optional[ProjectType] = None
    category: Optional[ProjectCategory] = None
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    priority: Optional[Priority] = None
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    lead: Optional[EntityId] = None
    assignees: Optional[List[EntityId]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v):
        v = _check_name(v)
        return v.upper() if v else v

    @field_validator("name", "key", "type", "category", "status", "priority",
                     "start_date", "end_date", "assignees")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v


class ColumnCreateRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class ColumnReorderRequest(BaseModel):
    direction: str

    @field_validator("direction")
    @classmethod
    def validate_direction(cls, v):
        if v not in ("up", "down"):
            raise ValueError("Valid direction (up or down) is required")
        return v


class ColumnsReplaceRequest(BaseModel):
    board_columns: List[ColumnSpec]

    @field_validator("board_columns", mode="before")
    @classmethod
    def accept_plain_names(cls, v):
        if isinstance(v, list):
            return [{"name": item} if isinstance(item, str) else item for item in v]
        return v


class TaskCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    project: EntityId
    assignee: EntityId
    type: TaskType = TaskType.TASK
    status: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    reporter: Optional[EntityId] = None
    parent_task: Optional[EntityId] = None
    sprint: Optional[EntityId] = None
    story_points: Optional[int] = Field(None, ge=0)
    due_date: Optional[UTCDateTime] = None
    time_spent: float = Field(0, ge=0)
    time_remaining: float = Field(0, ge=0)
    watchers: List[EntityId] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class TaskUpdateRequest(BaseModel):
    """Field-level task patch; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    type: Optional[TaskType] = None
    status: Optional[str] = None
    priority: Optional[Priority] = None
    assignee: Optional[EntityId] = None
    reporter: Optional[EntityId] = None
    parent_task: Optional[EntityId] = None
    sprint: Optional[EntityId] = None
    story_points: Optional[int] = Field(None, ge=0)
    due_date: Optional[UTCDateTime] = None
    time_spent: Optional[float] = Field(None, ge=0)
    time_remaining: Optional[float] = Field(None, ge=0)
    watchers: Optional[List[EntityId]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)

    @field_validator("type", "status", "priority", "assignee", "name",
                     "time_spent", "time_remaining", "watchers")
    @classmethod
    def reject_null(cls, v):
        # These fields may be omitted but never cleared
        if v is None:
            raise ValueError("cannot be null")
        return v


class SprintCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    project: EntityId
    start_date: UTCDateTime
    end_date: UTCDateTime
    goal: Optional[str] = None
    team: List[EntityId] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)


class SprintUpdateRequest(BaseModel):
    """Editable sprint fields; counters, membership and status have their own operations."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    start_date: Optional[UTCDateTime] = None
    end_date: Optional[UTCDateTime] = None
    goal: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v)

    @field_validator("name", "start_date", "end_date")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v


class TaskIdsRequest(BaseModel):
    task_ids: List[EntityId] = Field(min_length=1, description="Please provide an array of task IDs")


class MemberIdsRequest(BaseModel):
    member_ids: List[EntityId] = Field(min_length=1, description="Please provide an array of member IDs")


class SprintMoveRequest(BaseModel):
    sprint: Optional[EntityId] = None
    actor: Optional[EntityId] = None


class WatcherRequest(BaseModel):
    user: EntityId
    actor: Optional[EntityId] = None


class CommentRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    actor: Optional[EntityId] = None


# Response models


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    error: str
    message: str
    errors: Optional[List[str]] = None


class HealthResponse(BaseModel):
    status: str
    database_connected: bool
    timestamp: str


def create_error_response(code: str, message: str, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    """Create a standardized error response dictionary."""
    response = {"success": False, "error": code, "message": message}
    if errors:
        response["errors"] = errors
    return response


def create_success_response(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Create a standardized success response dictionary."""
    return {"success": True, "message": message, "data": data}
