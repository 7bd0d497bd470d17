"""
Command line interface for the Task Tracker.

    task-tracker serve --host 127.0.0.1 --port 8000
    task-tracker import project.yaml
    task-tracker burndown PROJECT_ID
    task-tracker columns PROJECT_ID
"""

import json
import logging
import os
import sys

import click

from .config import load_settings
from .database import TrackerDatabase
from .errors import TrackerError
from .importer import import_project_from_file
from .notifications import build_notifier
from .service import TrackerService

logger = logging.getLogger(__name__)


def _open_service(ctx: click.Context) -> TrackerService:
    settings = ctx.obj["settings"]
    database = TrackerDatabase(ctx.obj["db_path"])
    ctx.call_on_close(database.close)
    return TrackerService(database, notifier=build_notifier(settings))


def _fail(error: TrackerError) -> None:
    click.echo(f"Error: {error.message}", err=True)
    for detail in error.details.get("errors") or []:
        if detail != error.message:
            click.echo(f"  - {detail}", err=True)
    sys.exit(1)


@click.group(name="task-tracker")
@click.option("--db", "db_path", type=click.Path(dir_okay=False),
              help="SQLite database path (default: TRACKER_DATABASE_PATH or task_tracker.db)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, db_path, verbose):
    """Task tracker: projects, tasks and sprints."""
    settings = load_settings()
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level_number)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["db_path"] = db_path or settings.database_path


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
@click.pass_context
def serve(ctx, host, port, reload):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    # The app reads its database path from the environment at startup
    os.environ["TRACKER_DATABASE_PATH"] = ctx.obj["db_path"]
    logger.info(f"Serving Task Tracker API on http://{host}:{port}")
    uvicorn.run("task_tracker.api:app", host=host, port=port, reload=reload, log_level="info")


@main.command(name="import")
@click.argument("yaml_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--actor", help="User ID recorded as creator in the activity log")
@click.pass_context
def import_command(ctx, yaml_file, actor):
    """Import users, a project, sprints and tasks from YAML_FILE."""
    service = _open_service(ctx)
    try:
        stats = import_project_from_file(service, yaml_file, actor)
    except TrackerError as e:
        _fail(e)

    click.echo(f"Imported project {stats['project_id']}")
    for key in ("users_created", "projects_created", "sprints_created", "tasks_created"):
        click.echo(f"  {key.replace('_', ' ')}: {stats[key]}")
    for error in stats["errors"]:
        click.echo(f"  warning: {error}", err=True)


@main.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw burndown document")
@click.pass_context
def burndown(ctx, project_id, as_json):
    """Print remaining story points per day for PROJECT_ID."""
    service = _open_service(ctx)
    try:
        report = service.reports.burndown(project_id)
    except TrackerError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return
    click.echo(f"Total points: {report['total_points']}")
    for point in report["burndown"]:
        click.echo(f"{point['date']}  {point['remaining_points']}")


@main.command()
@click.argument("project_id")
@click.pass_context
def columns(ctx, project_id):
    """List the board columns of PROJECT_ID in order."""
    service = _open_service(ctx)
    try:
        board = service.workflow.list_columns(project_id)
    except TrackerError as e:
        _fail(e)

    for column in board:
        click.echo(f"{column.order}  {column.name}  ({column.id})")


if __name__ == "__main__":
    main()
