"""
Dependency edges between tasks.

An edge (from, to) stored as (dependency_task_id, dependee_task_id) means
"from depends on to". Edges may carry an ordered list of artifacts that flow
along them.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from .association_repository import chunked, placeholders
from .database import WbsDatabase

logger = logging.getLogger(__name__)


def dependency_row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "fromTaskId": row["dependency_task_id"],
        "toTaskId": row["dependee_task_id"],
        "createdAt": row["created_at"],
    }


class DependencyRepository:
    """Data access for dependency edges and the artifacts attached to them."""

    def __init__(self, db: WbsDatabase):
        self.db = db

    def insert(self, from_task_id: str, to_task_id: str, now: str) -> str:
        """
        Insert the edge "from_task_id depends on to_task_id".

        Callers check for self-edges, duplicates and cycles first.

        Returns:
            The generated dependency id
        """
        dependency_id = str(uuid.uuid4())
        self.db.execute(
            """
            INSERT INTO dependencies (id, dependency_task_id, dependee_task_id, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (dependency_id, from_task_id, to_task_id, now),
        )
        return dependency_id

    def update_endpoints(self, dependency_id: str, from_task_id: str, to_task_id: str) -> None:
        """Point an existing edge at new endpoints."""
        self.db.execute(
            "UPDATE dependencies SET dependency_task_id = ?, dependee_task_id = ? WHERE id = ?",
            (from_task_id, to_task_id, dependency_id),
        )

    def sync_artifacts(self, dependency_id: str, artifact_ids: Sequence[str], now: str) -> None:
        """Full replacement of the artifacts attached to an edge."""
        self.db.execute("DELETE FROM dependency_artifacts WHERE dependency_id = ?", (dependency_id,))
        for order_index, artifact_id in enumerate(artifact_ids):
            self.db.execute(
                """
                INSERT INTO dependency_artifacts (id, dependency_id, artifact_id, order_index, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), dependency_id, artifact_id, order_index, now),
            )

    def get(self, dependency_id: str) -> Optional[Dict[str, Any]]:
        """
        Load one edge with its ordered artifacts.

        Returns:
            Dict with id, fromTaskId, toTaskId, createdAt and artifacts, or None
        """
        row = self.db.fetchone(
            "SELECT id, dependency_task_id, dependee_task_id, created_at FROM dependencies WHERE id = ?",
            (dependency_id,),
        )
        if row is None:
            return None
        dependency = dependency_row_to_dict(row)
        dependency["artifacts"] = self._artifacts_for([dependency_id]).get(dependency_id, [])
        return dependency

    def find_edge(self, from_task_id: str, to_task_id: str) -> Optional[str]:
        """Id of the edge between the two tasks in this direction, if any."""
        row = self.db.fetchone(
            "SELECT id FROM dependencies WHERE dependency_task_id = ? AND dependee_task_id = ?",
            (from_task_id, to_task_id),
        )
        return row["id"] if row else None

    def would_create_cycle(self, from_task_id: str, to_task_id: str,
                           ignore_dependency_id: Optional[str] = None) -> bool:
        """
        Check whether adding from_task_id -> to_task_id would close a cycle.

        Args:
            from_task_id: Depending side of the proposed edge
            to_task_id: Upstream side of the proposed edge
            ignore_dependency_id: Edge left out of the walk, used when updating it

        Returns:
            True if to_task_id already depends, directly or transitively, on from_task_id
        """
        row = self.db.fetchone(
            """
            WITH RECURSIVE reach(id) AS (
                SELECT ?
                UNION
                SELECT d.dependee_task_id
                FROM dependencies d
                JOIN reach r ON d.dependency_task_id = r.id
                WHERE d.id IS NOT ?
            )
            SELECT 1 AS found FROM reach WHERE id = ? LIMIT 1
            """,
            (to_task_id, ignore_dependency_id, from_task_id),
        )
        return row is not None

    def delete(self, dependency_id: str) -> bool:
        """
        Delete an edge; its artifact links cascade.

        Returns:
            True if a row was removed
        """
        cursor = self.db.execute("DELETE FROM dependencies WHERE id = ?", (dependency_id,))
        return cursor.rowcount > 0

    def list_outgoing(self, task_id: str) -> List[Dict[str, Any]]:
        """Edges where task_id is the depending side."""
        return self._list_where("dependency_task_id = ?", (task_id,))

    def list_incoming(self, task_id: str) -> List[Dict[str, Any]]:
        """Edges where task_id is the upstream side."""
        return self._list_where("dependee_task_id = ?", (task_id,))

    def list_all(self) -> List[Dict[str, Any]]:
        return self._list_where("1 = 1", ())

    def _list_where(self, clause: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            f"""
            SELECT id, dependency_task_id, dependee_task_id, created_at
            FROM dependencies
            WHERE {clause}
            ORDER BY created_at, rowid
            """,
            params,
        )
        dependencies = [dependency_row_to_dict(row) for row in rows]
        artifacts = self._artifacts_for([dep["id"] for dep in dependencies])
        for dep in dependencies:
            dep["artifacts"] = artifacts.get(dep["id"], [])
        return dependencies

    def _artifacts_for(self, dependency_ids: Sequence[str]) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for chunk in chunked(list(dependency_ids)):
            rows = self.db.fetchall(
                f"""
                SELECT da.dependency_id, da.artifact_id, da.order_index, a.title
                FROM dependency_artifacts da
                JOIN artifacts a ON a.id = da.artifact_id
                WHERE da.dependency_id IN ({placeholders(len(chunk))})
                ORDER BY da.dependency_id, da.order_index
                """,
                chunk,
            )
            for row in rows:
                grouped.setdefault(row["dependency_id"], []).append({
                    "artifactId": row["artifact_id"],
                    "title": row["title"],
                    "orderIndex": row["order_index"],
                })
        return grouped
