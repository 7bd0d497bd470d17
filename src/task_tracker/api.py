"""
FastAPI HTTP adapter for the Task Tracker

Thin presentation layer: validates request bodies with pydantic models,
dispatches into TrackerService and maps TrackerError subclasses to structured
JSON responses with the matching status code.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_settings
from .database import TrackerDatabase
from .errors import TrackerError
from .models import (
    ColumnCreateRequest, ColumnReorderRequest, ColumnsReplaceRequest, CommentRequest,
    ErrorResponse, HealthResponse, MemberIdsRequest, ProjectCreateRequest, ProjectUpdateRequest,
    SprintCreateRequest, SprintMoveRequest, SprintUpdateRequest, TaskCreateRequest,
    TaskIdsRequest, TaskUpdateRequest, UserCreateRequest, UserUpdateRequest, WatcherRequest,
    create_error_response, create_success_response,
)
from .notifications import build_notifier
from .service import TrackerService

logger = logging.getLogger(__name__)

# Service instance for dependency injection, created in lifespan
service_instance: Optional[TrackerService] = None


def get_service() -> TrackerService:
    """
    FastAPI dependency to provide the tracker service.

    Raises:
        HTTPException: If the service has not been started
    """
    if service_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return service_instance


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and build the service on startup, close it on shutdown."""
    global service_instance

    settings = load_settings()
    logging.basicConfig(level=settings.log_level_number)
    try:
        database = TrackerDatabase(settings.database_path)
    except TrackerError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
    service_instance = TrackerService(database, notifier=build_notifier(settings))
    logger.info(f"Database initialized: {settings.database_path}")
    logger.info("Task Tracker API starting up...")

    yield

    service_instance = None
    database.close()
    logger.info("Database connection closed")


app = FastAPI(
    title="Task Tracker API",
    description="Projects, tasks and sprints with hierarchy and workflow enforcement",
    version="1.0.0",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(
        status_code=400,
        content=create_error_response("invalid_input", "Invalid input", errors),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content=create_error_response("server_error", "Internal server error"),
    )


# Health


@app.get("/healthz", response_model=HealthResponse)
async def health_check(service: TrackerService = Depends(get_service)):
    database_connected = service.store.ping()
    if not database_connected:
        logger.error("Database health check failed")
    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# Users


@app.post("/api/users", status_code=201)
async def create_user(request: UserCreateRequest, service: TrackerService = Depends(get_service)):
    return create_success_response(service.create_user(**request.model_dump()))


@app.get("/api/users")
async def list_users(service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_users())


@app.get("/api/users/{user_id}")
async def get_user(user_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.get_user(user_id))


@app.patch("/api/users/{user_id}")
async def update_user(user_id: str, request: UserUpdateRequest,
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.update_user(user_id, request.model_dump(exclude_unset=True)))


@app.delete("/api/users/{user_id}")
async def delete_user(user_id: str, service: TrackerService = Depends(get_service)):
    service.delete_user(user_id)
    return create_success_response(message="User deleted successfully")


# Projects


@app.post("/api/projects", status_code=201)
async def create_project(request: ProjectCreateRequest, service: TrackerService = Depends(get_service)):
    return create_success_response(service.create_project(**request.model_dump()))


@app.get("/api/projects")
async def list_projects(service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_projects())


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.get_project(project_id))


@app.patch("/api/projects/{project_id}")
async def update_project(project_id: str, request: ProjectUpdateRequest,
                         service: TrackerService = Depends(get_service)):
    return create_success_response(service.update_project(project_id, request.model_dump(exclude_unset=True)))


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str, service: TrackerService = Depends(get_service)):
    service.delete_project(project_id)
    return create_success_response(message="Project deleted successfully")


# Board columns


@app.get("/api/projects/{project_id}/columns")
async def list_columns(project_id: str, service: TrackerService = Depends(get_service)):
    columns = service.workflow.list_columns(project_id)
    return create_success_response([column.model_dump() for column in columns])


@app.post("/api/projects/{project_id}/columns", status_code=201)
async def add_column(project_id: str, request: ColumnCreateRequest,
                     service: TrackerService = Depends(get_service)):
    column = service.workflow.add_column(project_id, request.name)
    return create_success_response(column.model_dump())


@app.put("/api/projects/{project_id}/columns")
async def replace_columns(project_id: str, request: ColumnsReplaceRequest,
                          service: TrackerService = Depends(get_service)):
    columns = service.workflow.replace_all(project_id, [column.model_dump() for column in request.board_columns])
    return create_success_response([column.model_dump() for column in columns])


@app.delete("/api/projects/{project_id}/columns/{column_id}")
async def remove_column(project_id: str, column_id: str, service: TrackerService = Depends(get_service)):
    columns = service.workflow.remove_column(project_id, column_id)
    return create_success_response([column.model_dump() for column in columns])


@app.post("/api/projects/{project_id}/columns/{column_id}/reorder")
async def reorder_column(project_id: str, column_id: str, request: ColumnReorderRequest,
                         service: TrackerService = Depends(get_service)):
    columns = service.workflow.reorder(project_id, column_id, request.direction)
    return create_success_response([column.model_dump() for column in columns])


@app.get("/api/projects/{project_id}/statuses")
async def list_statuses(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.workflow.list_statuses(project_id))


# Project task views


@app.get("/api/projects/{project_id}/tasks")
async def list_project_tasks(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_tasks(project_id))


@app.get("/api/projects/{project_id}/epics")
async def list_project_epics(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_epics(project_id))


@app.get("/api/projects/{project_id}/backlog")
async def project_backlog(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.backlog(project_id))


@app.get("/api/projects/{project_id}/sprints/active")
async def active_sprints(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.active_sprints(project_id))


# Reports


@app.get("/api/projects/{project_id}/reports/summary")
async def status_summary(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.status_breakdown(project_id))


@app.get("/api/projects/{project_id}/reports/priority")
async def priority_summary(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.priority_breakdown(project_id))


@app.get("/api/projects/{project_id}/reports/types")
async def type_summary(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.type_breakdown(project_id))


@app.get("/api/projects/{project_id}/reports/team")
async def team_workload(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.team_workload(project_id))


@app.get("/api/projects/{project_id}/reports/epics")
async def epic_progress(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.epic_progress(project_id))


@app.get("/api/projects/{project_id}/reports/burndown")
async def burndown(project_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.burndown(project_id))


@app.get("/api/projects/{project_id}/activity")
async def recent_activity(project_id: str, limit: int = Query(10, ge=1, le=500),
                          service: TrackerService = Depends(get_service)):
    return create_success_response(service.recent_activity(project_id, limit))


# Tasks


@app.get("/api/tasks")
async def list_tasks(service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_tasks())


@app.post("/api/tasks", status_code=201)
async def create_task(request: TaskCreateRequest,
                      actor: Optional[str] = Header(None, alias="X-User-Id"),
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.create_task(actor, request.model_dump()))


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.get_task(task_id))


@app.patch("/api/tasks/{task_id}")
async def update_task(task_id: str, request: TaskUpdateRequest,
                      actor: Optional[str] = Header(None, alias="X-User-Id"),
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.update_task(actor, task_id, request.model_dump(exclude_unset=True)))


@app.delete("/api/tasks/{task_id}")
async def delete_task(task_id: str,
                      actor: Optional[str] = Header(None, alias="X-User-Id"),
                      service: TrackerService = Depends(get_service)):
    service.delete_task(actor, task_id)
    return create_success_response(message="Task deleted successfully")


@app.get("/api/tasks/{task_id}/children")
async def child_tasks(task_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.child_tasks(task_id))


@app.put("/api/tasks/{task_id}/sprint")
async def move_task_to_sprint(task_id: str, request: SprintMoveRequest,
                              actor: Optional[str] = Header(None, alias="X-User-Id"),
                              service: TrackerService = Depends(get_service)):
    return create_success_response(service.move_task_to_sprint(request.actor or actor, task_id, request.sprint))


@app.post("/api/tasks/{task_id}/watchers")
async def add_watcher(task_id: str, request: WatcherRequest,
                      actor: Optional[str] = Header(None, alias="X-User-Id"),
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.add_watcher(request.actor or actor, task_id, request.user))


@app.post("/api/tasks/{task_id}/comments", status_code=201)
async def add_comment(task_id: str, request: CommentRequest,
                      actor: Optional[str] = Header(None, alias="X-User-Id"),
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.add_comment(request.actor or actor, task_id, request.text))


@app.get("/api/tasks/{task_id}/activity")
async def task_activity(task_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.task_activity(task_id))


# Sprints


@app.post("/api/sprints", status_code=201)
async def create_sprint(request: SprintCreateRequest, service: TrackerService = Depends(get_service)):
    return create_success_response(service.create_sprint(request.model_dump()))


@app.get("/api/sprints")
async def list_sprints(project: Optional[str] = None, service: TrackerService = Depends(get_service)):
    return create_success_response(service.list_sprints(project))


@app.get("/api/sprints/{sprint_id}")
async def get_sprint(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.get_sprint(sprint_id))


@app.patch("/api/sprints/{sprint_id}")
async def update_sprint(sprint_id: str, request: SprintUpdateRequest,
                        service: TrackerService = Depends(get_service)):
    return create_success_response(service.update_sprint(sprint_id, request.model_dump(exclude_unset=True)))


@app.delete("/api/sprints/{sprint_id}")
async def delete_sprint(sprint_id: str, service: TrackerService = Depends(get_service)):
    service.delete_sprint(sprint_id)
    return create_success_response(message="Sprint deleted successfully")


@app.get("/api/sprints/{sprint_id}/tasks")
async def sprint_tasks(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.sprint_tasks(sprint_id))


@app.post("/api/sprints/{sprint_id}/tasks")
async def add_tasks_to_sprint(sprint_id: str, request: TaskIdsRequest,
                              service: TrackerService = Depends(get_service)):
    return create_success_response(service.add_tasks_to_sprint(sprint_id, request.task_ids))


@app.post("/api/sprints/{sprint_id}/tasks/remove")
async def remove_tasks_from_sprint(sprint_id: str, request: TaskIdsRequest,
                                   service: TrackerService = Depends(get_service)):
    return create_success_response(service.remove_tasks_from_sprint(sprint_id, request.task_ids))


@app.post("/api/sprints/{sprint_id}/members")
async def add_members(sprint_id: str, request: MemberIdsRequest,
                      service: TrackerService = Depends(get_service)):
    return create_success_response(service.add_members_to_sprint(sprint_id, request.member_ids))


@app.post("/api/sprints/{sprint_id}/start")
async def start_sprint(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.start_sprint(sprint_id))


@app.post("/api/sprints/{sprint_id}/complete")
async def complete_sprint(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.complete_sprint(sprint_id))


@app.post("/api/sprints/{sprint_id}/cancel")
async def cancel_sprint(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.cancel_sprint(sprint_id))


@app.get("/api/sprints/{sprint_id}/stats")
async def sprint_stats(sprint_id: str, service: TrackerService = Depends(get_service)):
    return create_success_response(service.reports.sprint_stats(sprint_id))
