"""
Tests for the click command line interface.
"""

import json
import os
import tempfile
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from task_tracker.cli import main


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("TRACKER_SMTP_HOST", raising=False)
    return CliRunner()


@pytest.fixture
def yaml_file():
    document = {
        "users": [{"first_name": "Alice", "last_name": "Smith", "email": "alice@example.com"}],
        "project": {"name": "Apollo", "key": "APL", "start_date": "2026-03-01", "end_date": "2026-03-03",
                    "lead": "alice@example.com"},
        "standalone_tasks": [
            {"name": "Invoices", "assignee": "alice@example.com", "story_points": 3},
            {"name": "Nobody's task", "assignee": "ghost@example.com"},
        ],
    }
    with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8") as f:
        yaml.safe_dump(document, f)
    yield f.name
    os.unlink(f.name)


class TestImportCommand:

    def test_import_prints_statistics(self, runner, db_path, yaml_file):
        result = runner.invoke(main, ["--db", db_path, "import", yaml_file])

        assert result.exit_code == 0
        assert "Imported project " in result.output
        assert "tasks created: 1" in result.output
        assert "users created: 1" in result.output
        assert "ghost@example.com" in result.output

    def test_import_missing_file(self, runner, db_path):
        result = runner.invoke(main, ["--db", db_path, "import", "/nonexistent/project.yaml"])
        assert result.exit_code == 2

    def test_import_structure_error_exits_1(self, runner, db_path):
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        try:
            result = runner.invoke(main, ["--db", db_path, "import", f.name])
        finally:
            os.unlink(f.name)

        assert result.exit_code == 1
        assert "Error: YAML document must contain a dictionary" in result.output


class TestReportCommands:

    def test_columns(self, runner, db_path, service, project):
        result = runner.invoke(main, ["--db", db_path, "columns", project["id"]])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert [line.split("  ")[:2] for line in lines] == [
            ["0", "To Do"], ["1", "In Progress"], ["2", "In Review"], ["3", "Done"],
        ]

    def test_burndown(self, runner, db_path, make_task, project):
        make_task("Invoices", story_points=5)

        result = runner.invoke(main, ["--db", db_path, "burndown", project["id"]])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0] == "Total points: 5"
        assert lines[1] == "2026-03-01  5"
        assert len(lines) == 11

    def test_burndown_json(self, runner, db_path, project):
        result = runner.invoke(main, ["--db", db_path, "burndown", "--json", project["id"]])

        assert result.exit_code == 0
        report = json.loads(result.output)
        assert report["total_points"] == 0
        assert len(report["burndown"]) == 10

    def test_invalid_id_exits_1(self, runner, db_path):
        result = runner.invoke(main, ["--db", db_path, "columns", "not-an-id"])

        assert result.exit_code == 1
        assert "Error: Invalid project ID" in result.output

    def test_unknown_project_exits_1(self, runner, db_path):
        result = runner.invoke(main, ["--db", db_path, "burndown", "0" * 32])
        assert result.exit_code == 1
        assert "Project not found" in result.output


class TestServeCommand:

    @patch("uvicorn.run")
    def test_serve_passes_database_to_app(self, mock_run, runner, db_path, monkeypatch):
        monkeypatch.delenv("TRACKER_DATABASE_PATH", raising=False)

        result = runner.invoke(main, ["--db", db_path, "serve", "--port", "9001"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with(
            "task_tracker.api:app", host="127.0.0.1", port=9001, reload=False, log_level="info")
        assert os.environ["TRACKER_DATABASE_PATH"] == db_path
