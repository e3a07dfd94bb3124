"""
Shared fixtures for the WBS task manager test suite.

Every test gets its own temporary SQLite file, removed afterwards through
close_and_reset() so WAL/SHM side files do not leak between tests.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from wbs_manager.database import WbsDatabase
from wbs_manager.gantt import GanttProjector
from wbs_manager.models import TaskCreateInput
from wbs_manager.task_service import ArtifactService, DependencyService, TaskService


@pytest.fixture
def db_path():
    """Path to a database file inside a fresh temporary directory."""
    with tempfile.TemporaryDirectory(prefix="test_wbs_") as tmp_dir:
        yield str(Path(tmp_dir) / "data" / "wbs.db")


@pytest.fixture
def db(db_path):
    database = WbsDatabase(db_path)
    yield database
    database.close_and_reset()


@pytest.fixture
def task_service(db):
    return TaskService(db)


@pytest.fixture
def artifact_service(db):
    return ArtifactService(db)


@pytest.fixture
def dependency_service(db):
    return DependencyService(db)


@pytest.fixture
def gantt(db):
    return GanttProjector(db)


@pytest.fixture
def make_task(task_service):
    """Create a task from keyword arguments (camelCase) and return its id."""
    def _make(**fields):
        return task_service.create_task(TaskCreateInput.model_validate(fields))["taskId"]
    return _make
