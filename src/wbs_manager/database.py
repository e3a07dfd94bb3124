"""
WBS Database Layer

Owns the SQLite file backing the work-breakdown tree: schema creation,
additive migrations, connection lifecycle and explicit transactions. WAL mode
and foreign keys are always on; child rows are removed by ON DELETE CASCADE.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .config import WbsConfig
from .errors import StoreError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class WbsDatabase:
    """
    Single-connection SQLite store for tasks, artifacts and their links.

    Features:
    - WAL mode with NORMAL sync for local durability
    - Explicit BEGIN/COMMIT/ROLLBACK through transaction()
    - RLock-serialized access so one logical request runs at a time
    - Idempotent schema creation plus additive column migrations
    """

    # Columns added after the first schema revision, applied to older files.
    _MIGRATIONS = {
        "tasks": [
            ("details", "TEXT"),
            ("version", "INTEGER NOT NULL DEFAULT 1"),
        ],
        "artifacts": [
            ("version", "INTEGER NOT NULL DEFAULT 1"),
        ],
    }

    def __init__(self, db_path: str):
        """
        Open (creating if needed) the database at db_path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._in_transaction = False

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self) -> None:
        try:
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,  # Autocommit, transactions are explicit
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")

            self._create_schema()
            self._migrate()
            logger.debug(f"Opened WBS database at {self.db_path}")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize database at {self.db_path}: {e}") from e

    def _create_schema(self) -> None:
        """Create tables and indexes. Never drops anything."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                parent_id TEXT,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                details TEXT,
                assignee TEXT,
                status TEXT DEFAULT 'draft',
                estimate TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (parent_id) REFERENCES tasks (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS artifacts (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                uri TEXT,
                description TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                UNIQUE (title)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_artifacts (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                artifact_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('deliverable', 'prerequisite')),
                crud_operations TEXT,
                order_index INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (task_id) REFERENCES tasks (id) ON DELETE CASCADE,
                FOREIGN KEY (artifact_id) REFERENCES artifacts (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_completion_conditions (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                description TEXT NOT NULL,
                order_index INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (task_id) REFERENCES tasks (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dependencies (
                id TEXT PRIMARY KEY,
                dependency_task_id TEXT NOT NULL,
                dependee_task_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (dependency_task_id) REFERENCES tasks (id) ON DELETE CASCADE,
                FOREIGN KEY (dependee_task_id) REFERENCES tasks (id) ON DELETE CASCADE,
                UNIQUE (dependency_task_id, dependee_task_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dependency_artifacts (
                id TEXT PRIMARY KEY,
                dependency_id TEXT NOT NULL,
                artifact_id TEXT NOT NULL,
                order_index INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY (dependency_id) REFERENCES dependencies (id) ON DELETE CASCADE,
                FOREIGN KEY (artifact_id) REFERENCES artifacts (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS task_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id TEXT NOT NULL,
                title TEXT,
                description TEXT,
                status TEXT,
                assignee TEXT,
                estimate TEXT,
                version INTEGER NOT NULL,
                changed_at TEXT NOT NULL,
                FOREIGN KEY (task_id) REFERENCES tasks (id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_task_artifacts_task ON task_artifacts(task_id, role, order_index)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_task_artifacts_artifact ON task_artifacts(artifact_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_conditions_task ON task_completion_conditions(task_id, order_index)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_dependencies_from ON dependencies(dependency_task_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_dependencies_to ON dependencies(dependee_task_id)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_dependency_artifacts_dep ON dependency_artifacts(dependency_id, order_index)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_task_history_task ON task_history(task_id)")

    def _migrate(self) -> None:
        """Add columns that older database files are missing."""
        cursor = self._connection.cursor()
        for table, columns in self._MIGRATIONS.items():
            existing = {row["name"] for row in cursor.execute(f"PRAGMA table_info({table})")}
            for column, ddl in columns:
                if column not in existing:
                    logger.info(f"Migrating {table}: adding column {column}")
                    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run the enclosed statements as one transaction.

        Commits on normal exit, rolls back and re-raises on any exception.
        sqlite3 errors are re-raised as StoreError.
        """
        with self._connection_lock:
            if self._connection is None:
                raise StoreError("Database connection is closed")
            if self._in_transaction:
                raise StoreError("Nested transactions are not supported")

            cursor = self._connection.cursor()
            self._in_transaction = True
            try:
                cursor.execute("BEGIN")
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(cursor)
                raise StoreError(f"Transaction failed: {e}") from e
            except Exception:
                self._rollback(cursor)
                raise
            finally:
                self._in_transaction = False

    def _rollback(self, cursor: sqlite3.Cursor) -> None:
        if self._connection is not None and self._connection.in_transaction:
            cursor.execute("ROLLBACK")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._connection_lock:
            if self._connection is None:
                raise StoreError("Database connection is closed")
            try:
                return self._connection.execute(sql, tuple(params))
            except sqlite3.Error as e:
                raise StoreError(f"Query failed: {e}") from e

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self._connection_lock:
            row = self.execute(sql, params).fetchone()
            return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._connection_lock:
            return [dict(row) for row in self.execute(sql, params).fetchall()]

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close_and_reset(self) -> None:
        """Close the connection and delete the database file with its WAL/SHM siblings."""
        self.close()
        for suffix in ("", "-wal", "-shm"):
            Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)
        logger.info(f"Removed WBS database at {self.db_path}")


def open_database(config: WbsConfig) -> WbsDatabase:
    """Open the database named by the configuration."""
    logger.info(f"Using database {config.database_path}")
    return WbsDatabase(str(config.database_path))
