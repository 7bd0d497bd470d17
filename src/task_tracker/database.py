"""
Tracker Database Layer

Provides a SQLite-backed Entity Store with WAL mode for concurrent access.
Each entity kind lives in its own table holding one JSON document per row;
reference fields are filtered and indexed through json_extract so the
tracker can query by project, sprint, parent task and set membership.
"""

import json
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .errors import StorageFailure
from .ids import new_id
from .store import (
    ACTIVITIES, DESCENDING, KINDS, PROJECTS, SPRINTS, TASKS, USERS,
    Document, EntityStore, Filter, SortSpec,
)

logger = logging.getLogger(__name__)

_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# (kind, index name, indexed JSON fields)
_INDEXES = [
    (USERS, "idx_users_email", ["email"]),
    (PROJECTS, "idx_projects_key", ["key"]),
    (TASKS, "idx_tasks_project", ["project"]),
    (TASKS, "idx_tasks_parent", ["parent_task"]),
    (TASKS, "idx_tasks_sprint", ["sprint"]),
    (TASKS, "idx_tasks_project_sprint", ["project", "sprint"]),
    (SPRINTS, "idx_sprints_project", ["project"]),
    (ACTIVITIES, "idx_activities_project_time", ["project", "timestamp"]),
]


def _isoformat(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    return value.isoformat()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return _isoformat(value)
    if isinstance(value, set):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(document: Document) -> str:
    return json.dumps(document, default=_json_default)


def _path(field: str) -> str:
    if not _FIELD_PATTERN.match(field):
        raise ValueError(f"Invalid field name in filter: {field!r}")
    return f"$.{field}"


def _param(value: Any) -> Any:
    # json_extract yields 1/0 for JSON booleans
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return _isoformat(value)
    return value


class TrackerDatabase(EntityStore):
    """
    SQLite document store implementing the EntityStore contract.

    Features:
    - WAL mode for concurrent read/write access
    - Single cross-thread connection guarded by a re-entrant lock
    - JSON validity enforced by CHECK constraints
    - Expression indexes on reference fields used by the tracker
    """

    def __init__(self, db_path: str):
        """
        Initialize TrackerDatabase with SQLite WAL mode configuration.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private in-memory store)
        """
        self.db_path = Path(db_path) if db_path != ":memory:" else None
        self._raw_path = db_path
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

    def _initialize_database(self, drop_existing: bool = False) -> None:
        """Open the connection, configure pragmas and create the schema.

        Args:
            drop_existing: If True, drops all existing tables for clean slate initialization
        """
        try:
            if self._connection is None:
                self._connection = sqlite3.connect(
                    self._raw_path,
                    isolation_level=None,  # Autocommit mode, explicit BEGIN for multi-statement work
                    check_same_thread=False,
                )
            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")

            if drop_existing:
                self._drop_existing_tables()

            self._create_schema()
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to initialize database at {self._raw_path}: {e}")

    def _create_schema(self) -> None:
        """Create one document table per entity kind plus reference indexes."""
        cursor = self._connection.cursor()
        for kind in KINDS:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {kind} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    CONSTRAINT json_valid_data CHECK (json_valid(data)),
                    CONSTRAINT json_object_data CHECK (json_type(data) = 'object')
                )
            """)

        for kind, name, fields in _INDEXES:
            columns = ", ".join(f"json_extract(data, '{_path(f)}')" for f in fields)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {kind} ({columns})")

    def _drop_existing_tables(self) -> None:
        cursor = self._connection.cursor()
        for _, name, _ in _INDEXES:
            cursor.execute(f"DROP INDEX IF EXISTS {name}")
        for kind in reversed(KINDS):
            cursor.execute(f"DROP TABLE IF EXISTS {kind}")

    @contextmanager
    def _transaction(self):
        """Context manager for explicit transaction control."""
        cursor = self._connection.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in KINDS:
            raise ValueError(f"Unknown entity kind: {kind!r}")

    def _compile_filter(self, filter: Optional[Filter]) -> Tuple[str, List[Any]]:
        """Translate a filter mapping into a WHERE clause and parameters."""
        clauses: List[str] = []
        params: List[Any] = []
        for field, condition in (filter or {}).items():
            if field == "id":
                column = "id"
            else:
                column = f"json_extract(data, '{_path(field)}')"

            if isinstance(condition, dict):
                for op, value in condition.items():
                    if op == "$in":
                        values = list(value)
                        if not values:
                            clauses.append("0")
                            continue
                        clauses.append(f"{column} IN ({', '.join('?' * len(values))})")
                        params.extend(_param(v) for v in values)
                    elif op == "$ne":
                        if value is None:
                            clauses.append(f"{column} IS NOT NULL")
                        else:
                            clauses.append(f"({column} IS NULL OR {column} != ?)")
                            params.append(_param(value))
                    elif op == "$contains":
                        clauses.append(
                            f"EXISTS (SELECT 1 FROM json_each(data, '{_path(field)}') AS member "
                            f"WHERE member.value = ?)"
                        )
                        params.append(_param(value))
                    else:
                        raise ValueError(f"Unsupported filter operator: {op}")
            elif condition is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(_param(condition))

        where = " AND ".join(clauses) if clauses else "1"
        return where, params

    @staticmethod
    def _compile_sort(sort: Optional[SortSpec]) -> str:
        if not sort:
            return "rowid ASC"
        parts = []
        for field, direction in sort:
            order = "DESC" if direction == DESCENDING else "ASC"
            parts.append(f"json_extract(data, '{_path(field)}') {order}")
        # Insertion order breaks ties in the requested direction
        parts.append(f"rowid {'DESC' if sort[0][1] == DESCENDING else 'ASC'}")
        return ", ".join(parts)

    def find_by_id(self, kind: str, entity_id: str) -> Optional[Document]:
        self._check_kind(kind)
        try:
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute(f"SELECT data FROM {kind} WHERE id = ?", (entity_id,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Database error reading {kind} {entity_id}: {e}")
            raise StorageFailure(f"Database error: {e}")
        return json.loads(row[0]) if row else None

    def find(self, kind: str, filter: Optional[Filter] = None,
             sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Document]:
        self._check_kind(kind)
        where, params = self._compile_filter(filter)
        query = f"SELECT data FROM {kind} WHERE {where} ORDER BY {self._compile_sort(sort)}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        try:
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute(query, params)
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Database error querying {kind}: {e}")
            raise StorageFailure(f"Database error: {e}")
        return [json.loads(row[0]) for row in rows]

    def count(self, kind: str, filter: Optional[Filter] = None) -> int:
        self._check_kind(kind)
        where, params = self._compile_filter(filter)
        try:
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute(f"SELECT COUNT(*) FROM {kind} WHERE {where}", params)
                return cursor.fetchone()[0] or 0
        except sqlite3.Error as e:
            logger.error(f"Database error counting {kind}: {e}")
            raise StorageFailure(f"Database error: {e}")

    def create(self, kind: str, data: Document) -> Document:
        self._check_kind(kind)
        document = dict(data)
        document.setdefault("id", new_id())
        document = json.loads(_dumps(document))
        try:
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute(
                    f"INSERT INTO {kind} (id, data) VALUES (?, ?)",
                    (document["id"], json.dumps(document)),
                )
        except sqlite3.Error as e:
            logger.error(f"Database error creating {kind}: {e}")
            raise StorageFailure(f"Database error: {e}")
        return document

    def update(self, kind: str, entity_id: str, patch: Document) -> Optional[Document]:
        self._check_kind(kind)
        changes = json.loads(_dumps({k: v for k, v in patch.items() if k != "id"}))
        try:
            with self._connection_lock:
                with self._transaction() as cursor:
                    cursor.execute(f"SELECT data FROM {kind} WHERE id = ?", (entity_id,))
                    row = cursor.fetchone()
                    if not row:
                        return None
                    document = json.loads(row[0])
                    document.update(changes)
                    cursor.execute(
                        f"UPDATE {kind} SET data = ? WHERE id = ?",
                        (json.dumps(document), entity_id),
                    )
        except sqlite3.Error as e:
            logger.error(f"Database error updating {kind} {entity_id}: {e}")
            raise StorageFailure(f"Database error: {e}")
        return document

    def delete(self, kind: str, entity_id: str) -> bool:
        self._check_kind(kind)
        try:
            with self._connection_lock:
                cursor = self._connection.cursor()
                cursor.execute(f"DELETE FROM {kind} WHERE id = ?", (entity_id,))
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Database error deleting {kind} {entity_id}: {e}")
            raise StorageFailure(f"Database error: {e}")

    def ping(self) -> bool:
        """Return True when the connection answers a trivial query."""
        try:
            with self._connection_lock:
                self._connection.execute("SELECT 1").fetchone()
            return True
        except (sqlite3.Error, AttributeError):
            return False

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def initialize_fresh(self) -> None:
        """Drop every table and recreate an empty schema."""
        with self._connection_lock:
            self._initialize_database(drop_existing=True)
