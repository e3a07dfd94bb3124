"""
Test suite for WbsDatabase: connection setup, schema, migrations,
transactions and lifecycle.
"""

import sqlite3
from pathlib import Path

import pytest

from wbs_manager.config import WbsConfig
from wbs_manager.database import WbsDatabase, open_database, utc_now
from wbs_manager.errors import StoreError


class TestDatabaseInitialization:
    """Test database initialization and schema creation."""

    def test_pragmas_configured(self, db):
        """WAL mode, NORMAL sync, busy timeout and foreign keys are on."""
        cursor = db._connection.cursor()
        assert cursor.execute("PRAGMA journal_mode").fetchone()[0].upper() == "WAL"
        assert cursor.execute("PRAGMA synchronous").fetchone()[0] == 1
        assert cursor.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        assert cursor.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_schema_tables_exist(self, db):
        rows = db.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = {row["name"] for row in rows}
        assert {
            "tasks", "artifacts", "task_artifacts", "task_completion_conditions",
            "dependencies", "dependency_artifacts", "task_history",
        } <= names

    def test_parent_directory_created(self, db_path):
        assert not Path(db_path).parent.exists()
        database = WbsDatabase(db_path)
        try:
            assert Path(db_path).exists()
        finally:
            database.close_and_reset()

    def test_schema_creation_is_idempotent(self, db_path):
        """Reopening an existing file keeps its data."""
        first = WbsDatabase(db_path)
        now = utc_now()
        first.execute(
            "INSERT INTO tasks (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            ("t1", "Keep me", now, now),
        )
        first.close()

        second = WbsDatabase(db_path)
        try:
            assert second.fetchone("SELECT title FROM tasks WHERE id = 't1'")["title"] == "Keep me"
        finally:
            second.close_and_reset()

    def test_migration_adds_missing_columns(self, db_path):
        """Older files without details/version columns are upgraded in place."""
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        legacy = sqlite3.connect(db_path)
        legacy.execute("""
            CREATE TABLE tasks (
                id TEXT PRIMARY KEY, parent_id TEXT, title TEXT NOT NULL,
                description TEXT, assignee TEXT, status TEXT, estimate TEXT,
                created_at TEXT NOT NULL, updated_at TEXT NOT NULL
            )
        """)
        legacy.execute(
            "INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('old', 'Old', 'x', 'x')"
        )
        legacy.commit()
        legacy.close()

        database = WbsDatabase(db_path)
        try:
            columns = {row["name"] for row in database.fetchall("PRAGMA table_info(tasks)")}
            assert {"details", "version"} <= columns
            assert database.fetchone("SELECT version FROM tasks WHERE id = 'old'")["version"] == 1
        finally:
            database.close_and_reset()

    def test_open_database_uses_config_path(self, db_path):
        database = open_database(WbsConfig(database_path=Path(db_path)))
        try:
            assert database.db_path == Path(db_path)
        finally:
            database.close_and_reset()


class TestTransactions:
    """Test explicit transaction handling."""

    def _insert(self, db, task_id):
        now = utc_now()
        db.execute(
            "INSERT INTO tasks (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (task_id, task_id, now, now),
        )

    def test_commit_on_success(self, db):
        with db.transaction():
            self._insert(db, "a")
        assert db.fetchone("SELECT id FROM tasks WHERE id = 'a'") is not None

    def test_rollback_on_exception(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction():
                self._insert(db, "b")
                raise RuntimeError("boom")
        assert db.fetchone("SELECT id FROM tasks WHERE id = 'b'") is None

    def test_sqlite_error_becomes_store_error(self, db):
        with pytest.raises(StoreError):
            with db.transaction():
                self._insert(db, "c")
                self._insert(db, "c")
        assert db.fetchone("SELECT id FROM tasks WHERE id = 'c'") is None

    def test_nested_transaction_rejected(self, db):
        with pytest.raises(StoreError):
            with db.transaction():
                with db.transaction():
                    pass
        # Connection still usable afterwards
        with db.transaction():
            self._insert(db, "d")
        assert db.fetchone("SELECT id FROM tasks WHERE id = 'd'") is not None

    def test_cascade_delete_removes_children(self, db):
        now = utc_now()
        db.execute(
            "INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('p', 'P', ?, ?)", (now, now)
        )
        db.execute(
            "INSERT INTO tasks (id, parent_id, title, created_at, updated_at) VALUES ('c', 'p', 'C', ?, ?)",
            (now, now),
        )
        db.execute("DELETE FROM tasks WHERE id = 'p'")
        assert db.fetchone("SELECT id FROM tasks WHERE id = 'c'") is None


class TestLifecycle:
    """Test connection close and reset."""

    def test_close_and_reset_removes_files(self, db_path):
        database = WbsDatabase(db_path)
        database.execute("SELECT 1")
        database.close_and_reset()
        assert not Path(db_path).exists()
        assert not Path(f"{db_path}-wal").exists()
        assert not Path(f"{db_path}-shm").exists()

    def test_use_after_close_raises(self, db_path):
        database = WbsDatabase(db_path)
        database.close()
        with pytest.raises(StoreError):
            database.execute("SELECT 1")
        Path(db_path).unlink(missing_ok=True)

    def test_context_manager_closes(self, db_path):
        with WbsDatabase(db_path) as database:
            database.execute("SELECT 1")
        assert database._connection is None
        Path(db_path).unlink(missing_ok=True)
