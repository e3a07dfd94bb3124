"""
Task association repositories.

Deliverable/prerequisite artifact links and completion conditions are owned by
their task and synchronized by full replacement: every call deletes the
existing rows for the task (and role) and re-inserts the supplied entries with
order_index 0, 1, 2, ... Entries without an artifact id or with a blank
description are skipped.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .database import WbsDatabase
from .errors import ArtifactNotFoundError

logger = logging.getLogger(__name__)

TASK_ARTIFACT_ROLES = ("deliverable", "prerequisite")

# Keeps IN (...) lists under SQLite's bound-parameter limit.
IN_CLAUSE_CHUNK = 500


def chunked(values: Sequence[str], size: int = IN_CLAUSE_CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class TaskArtifactRepository:
    """Ordered artifact links of a task, split by role."""

    def __init__(self, db: WbsDatabase):
        self.db = db

    def sync(self, task_id: str, role: str, entries: Iterable[Any], now: str) -> List[str]:
        """
        Replace all links of task_id in role with entries.

        Must run inside a transaction; a missing artifact raises
        ArtifactNotFoundError and the caller's transaction rolls back.

        Returns:
            Ids of the inserted association rows in order
        """
        if role not in TASK_ARTIFACT_ROLES:
            raise ValueError(f"Unknown artifact role: {role}")

        self.db.execute(
            "DELETE FROM task_artifacts WHERE task_id = ? AND role = ?",
            (task_id, role),
        )

        inserted = []
        order_index = 0
        for entry in entries:
            artifact_id = (getattr(entry, "artifact_id", None) or "").strip()
            if not artifact_id:
                continue
            exists = self.db.fetchone("SELECT 1 AS found FROM artifacts WHERE id = ?", (artifact_id,))
            if exists is None:
                raise ArtifactNotFoundError(artifact_id)

            row_id = str(uuid.uuid4())
            self.db.execute(
                """
                INSERT INTO task_artifacts
                    (id, task_id, artifact_id, role, crud_operations, order_index, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (row_id, task_id, artifact_id, role, getattr(entry, "crud_operations", None),
                 order_index, now, now),
            )
            inserted.append(row_id)
            order_index += 1

        logger.debug(f"Synced {len(inserted)} {role} link(s) for task {task_id}")
        return inserted

    def list_for_tasks(self, task_ids: Sequence[str]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        """Links for many tasks in one pass, grouped by task id and role."""
        grouped: Dict[str, Dict[str, List[Dict[str, Any]]]] = {
            task_id: {role: [] for role in TASK_ARTIFACT_ROLES} for task_id in task_ids
        }
        for chunk in chunked(list(task_ids)):
            rows = self.db.fetchall(
                f"""
                SELECT ta.id, ta.task_id, ta.artifact_id, ta.role, ta.crud_operations, ta.order_index,
                       a.title AS artifact_title, a.uri AS artifact_uri,
                       a.description AS artifact_description
                FROM task_artifacts ta
                JOIN artifacts a ON a.id = ta.artifact_id
                WHERE ta.task_id IN ({placeholders(len(chunk))})
                ORDER BY ta.task_id, ta.role, ta.order_index
                """,
                chunk,
            )
            for row in rows:
                grouped[row["task_id"]][row["role"]].append({
                    "id": row["id"],
                    "artifactId": row["artifact_id"],
                    "crudOperations": row["crud_operations"],
                    "orderIndex": row["order_index"],
                    "artifact": {
                        "id": row["artifact_id"],
                        "title": row["artifact_title"],
                        "uri": row["artifact_uri"],
                        "description": row["artifact_description"],
                    },
                })
        return grouped


class CompletionConditionRepository:
    """Ordered completion criteria of a task."""

    def __init__(self, db: WbsDatabase):
        self.db = db

    def sync(self, task_id: str, entries: Iterable[Any], now: str) -> List[str]:
        """
        Replace all completion conditions of task_id with entries.

        Blank descriptions are skipped and do not consume an order_index.

        Returns:
            Ids of the inserted condition rows in order
        """
        self.db.execute("DELETE FROM task_completion_conditions WHERE task_id = ?", (task_id,))

        inserted = []
        for entry in entries:
            description = (getattr(entry, "description", None) or "").strip()
            if not description:
                continue
            row_id = str(uuid.uuid4())
            self.db.execute(
                """
                INSERT INTO task_completion_conditions
                    (id, task_id, description, order_index, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (row_id, task_id, description, len(inserted), now, now),
            )
            inserted.append(row_id)
        return inserted

    def list_for_tasks(self, task_ids: Sequence[str]) -> Dict[str, List[Dict[str, Any]]]:
        """Conditions for many tasks in one pass, grouped by task id."""
        grouped: Dict[str, List[Dict[str, Any]]] = {task_id: [] for task_id in task_ids}
        for chunk in chunked(list(task_ids)):
            rows = self.db.fetchall(
                f"""
                SELECT id, task_id, description, order_index
                FROM task_completion_conditions
                WHERE task_id IN ({placeholders(len(chunk))})
                ORDER BY task_id, order_index
                """,
                chunk,
            )
            for row in rows:
                grouped[row["task_id"]].append({
                    "id": row["id"],
                    "description": row["description"],
                    "orderIndex": row["order_index"],
                })
        return grouped


def find_missing_artifacts(db: WbsDatabase, artifact_ids: Sequence[str]) -> Optional[str]:
    """Return the first id in artifact_ids with no artifact row, or None."""
    for artifact_id in artifact_ids:
        if db.fetchone("SELECT 1 AS found FROM artifacts WHERE id = ?", (artifact_id,)) is None:
            return artifact_id
    return None
