"""
Shared fixtures for the Task Tracker test suite.

Provides an isolated temporary SQLite database per test, a deterministic
clock, a recording notification sender, and small factories for users,
projects, tasks and sprints built through TrackerService.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from task_tracker.database import TrackerDatabase
from task_tracker.notifications import RecordingNotificationSender
from task_tracker.service import TrackerService


class SteppingClock:
    """Clock returning strictly increasing UTC times, one microsecond apart."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + timedelta(microseconds=1)
        return now

    def set(self, value: datetime) -> None:
        self.current = value


def remove_database(path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        Path(path + suffix).unlink(missing_ok=True)


@pytest.fixture
def db_path():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp_file:
        path = tmp_file.name
    yield path
    remove_database(path)


@pytest.fixture
def db(db_path):
    database = TrackerDatabase(db_path)
    yield database
    database.close()


@pytest.fixture
def clock():
    return SteppingClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def notifier():
    return RecordingNotificationSender()


@pytest.fixture
def service(db, notifier, clock):
    return TrackerService(db, notifier=notifier, clock=clock)


@pytest.fixture
def alice(service):
    return service.create_user("Alice", "Smith", "alice@example.com", "manager")


@pytest.fixture
def bob(service):
    return service.create_user("Bob", "Jones", "bob@example.com")


@pytest.fixture
def project(service, alice):
    return service.create_project(
        name="Apollo",
        key="apl",
        start_date="2026-03-01",
        end_date="2026-03-10",
        lead=alice["id"],
    )


@pytest.fixture
def other_project(service, alice):
    return service.create_project(name="Gemini", key="GEM", end_date="2026-06-30")


@pytest.fixture
def make_task(service, project, alice):
    """Factory creating a task in the default project, assigned to alice."""

    def _make(name, actor=None, **fields):
        data = {
            "name": name,
            "description": f"{name} description",
            "project": project["id"],
            "assignee": alice["id"],
        }
        data.update(fields)
        return service.create_task(actor, data)

    return _make


@pytest.fixture
def make_sprint(service, project):
    """Factory creating a two-week sprint in the default project."""

    def _make(name="Sprint 1", **fields):
        data = {
            "name": name,
            "project": project["id"],
            "start_date": "2026-03-02",
            "end_date": "2026-03-16",
        }
        data.update(fields)
        return service.create_sprint(data)

    return _make
