"""
Task Repository

Row-level access to the tasks table plus tree materialization. A subtree is
loaded with one recursive query and assembled in memory; associations for
the whole subtree are fetched in batched IN (...) queries.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .association_repository import CompletionConditionRepository, TaskArtifactRepository
from .database import WbsDatabase
from .dependency_repository import DependencyRepository

logger = logging.getLogger(__name__)

TASK_COLUMNS = (
    "id, parent_id, title, description, details, assignee, status, estimate, "
    "created_at, updated_at, version"
)
QUALIFIED_TASK_COLUMNS = ", ".join("t." + column.strip() for column in TASK_COLUMNS.split(","))

# Hard stop for recursive walks; the tree is acyclic so this is never reached
# by valid data.
MAX_TREE_DEPTH = 10000

# Columns a caller may replace through update_fields.
UPDATABLE_COLUMNS = ("title", "description", "details", "assignee", "status", "estimate")


def task_row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "parentId": row["parent_id"],
        "title": row["title"],
        "description": row["description"],
        "details": row["details"],
        "assignee": row["assignee"],
        "status": row["status"],
        "estimate": row["estimate"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "version": row["version"],
    }


class TaskRepository:
    """Data access for tasks and their materialized trees."""

    def __init__(self, db: WbsDatabase):
        self.db = db
        self.task_artifacts = TaskArtifactRepository(db)
        self.conditions = CompletionConditionRepository(db)
        self.dependencies = DependencyRepository(db)

    def insert(
        self,
        title: str,
        description: Optional[str],
        parent_id: Optional[str],
        assignee: Optional[str],
        status: str,
        estimate: Optional[str],
        details: Optional[str],
        now: str,
    ) -> str:
        """
        Insert a task row at version 1.

        Args:
            title: Non-blank title
            description: Stored as an empty string when None
            parent_id: Existing parent task, or None for a root task
            status: Initial status, usually derived as draft or pending
            now: Timestamp for created_at and updated_at

        Returns:
            The generated task id
        """
        task_id = str(uuid.uuid4())
        self.db.execute(
            f"""
            INSERT INTO tasks ({TASK_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (task_id, parent_id, title, description or "", details, assignee, status,
             estimate, now, now),
        )
        return task_id

    def get_row(self, task_id: str) -> Optional[Dict[str, Any]]:
        """The task row alone, without children or associations."""
        row = self.db.fetchone(f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
        return task_row_to_dict(row) if row else None

    def exists(self, task_id: str) -> bool:
        return self.db.fetchone("SELECT 1 AS found FROM tasks WHERE id = ?", (task_id,)) is not None

    def get_parent(self, task_id: str) -> Tuple[bool, Optional[str]]:
        """
        Look up the parent of task_id.

        Returns:
            (found, parent_id); found is False when task_id has no row
        """
        row = self.db.fetchone("SELECT parent_id FROM tasks WHERE id = ?", (task_id,))
        if row is None:
            return False, None
        return True, row["parent_id"]

    def get_tree(self, task_id: str) -> Optional[Dict[str, Any]]:
        """
        Load task_id with its full descendant tree.

        Children are ordered by creation time. Every node carries its
        deliverables, prerequisites and completion conditions; the root also
        carries its dependency edges in both directions.
        """
        rows = self.db.fetchall(
            f"""
            WITH RECURSIVE subtree(id, depth) AS (
                SELECT id, 0 FROM tasks WHERE id = ?
                UNION ALL
                SELECT t.id, s.depth + 1
                FROM tasks t
                JOIN subtree s ON t.parent_id = s.id
                WHERE s.depth < {MAX_TREE_DEPTH}
            )
            SELECT {QUALIFIED_TASK_COLUMNS}, s.depth
            FROM tasks t
            JOIN subtree s ON t.id = s.id
            ORDER BY s.depth, t.created_at, t.rowid
            """,
            (task_id,),
        )
        if not rows:
            return None

        nodes: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            node = task_row_to_dict(row)
            node["children"] = []
            nodes[node["id"]] = node
            if row["depth"] > 0:
                nodes[row["parent_id"]]["children"].append(node)

        ids = list(nodes)
        links = self.task_artifacts.list_for_tasks(ids)
        conditions = self.conditions.list_for_tasks(ids)
        for node_id, node in nodes.items():
            node["deliverables"] = links[node_id]["deliverable"]
            node["prerequisites"] = links[node_id]["prerequisite"]
            node["completionConditions"] = conditions[node_id]

        root = nodes[task_id]
        root["dependencies"] = self.dependencies.list_outgoing(task_id)
        root["dependents"] = self.dependencies.list_incoming(task_id)
        return root

    def list_children(self, parent_id: Optional[str], status: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Direct children of parent_id (roots when None), oldest first.

        Each entry carries childCount (direct children) and descendantCount.
        """
        clauses = ["t.parent_id IS ?"]
        params: List[Any] = [parent_id]
        if status is not None:
            clauses.append("t.status = ?")
            params.append(status)
        where = " AND ".join(clauses)

        rows = self.db.fetchall(
            f"""
            SELECT {QUALIFIED_TASK_COLUMNS},
                   (SELECT COUNT(1) FROM tasks c WHERE c.parent_id = t.id) AS child_count
            FROM tasks t
            WHERE {where}
            ORDER BY t.created_at, t.rowid
            """,
            params,
        )
        descendant_counts = self._descendant_counts(where, params)

        tasks = []
        for row in rows:
            task = task_row_to_dict(row)
            task["childCount"] = row["child_count"]
            task["descendantCount"] = descendant_counts.get(row["id"], 0)
            tasks.append(task)
        return tasks

    def _descendant_counts(self, where: str, params: List[Any]) -> Dict[str, int]:
        rows = self.db.fetchall(
            f"""
            WITH RECURSIVE descendants(root_id, id, depth) AS (
                SELECT t.id, t.id, 0 FROM tasks t WHERE {where}
                UNION ALL
                SELECT d.root_id, c.id, d.depth + 1
                FROM tasks c
                JOIN descendants d ON c.parent_id = d.id
                WHERE d.depth < {MAX_TREE_DEPTH}
            )
            SELECT root_id, COUNT(1) - 1 AS total FROM descendants GROUP BY root_id
            """,
            params,
        )
        return {row["root_id"]: row["total"] for row in rows}

    def list_forest_rows(self, root_parent_id: Optional[str]) -> List[Dict[str, Any]]:
        """
        Raw rows of every task below root_parent_id (the whole forest when None).

        Rows carry depth relative to the forest root so that callers can
        reconstruct order without another query. The scope task itself is
        not included.
        """
        if root_parent_id is None:
            seed = "SELECT id, 0 FROM tasks WHERE parent_id IS NULL"
            params: Tuple[Any, ...] = ()
        else:
            seed = "SELECT id, 1 FROM tasks WHERE parent_id = ?"
            params = (root_parent_id,)
        return self.db.fetchall(
            f"""
            WITH RECURSIVE subtree(id, depth) AS (
                {seed}
                UNION ALL
                SELECT t.id, s.depth + 1
                FROM tasks t
                JOIN subtree s ON t.parent_id = s.id
                WHERE s.depth < {MAX_TREE_DEPTH}
            )
            SELECT {QUALIFIED_TASK_COLUMNS}, s.depth
            FROM tasks t
            JOIN subtree s ON t.id = s.id
            ORDER BY s.depth, t.created_at, t.rowid
            """,
            params,
        )

    def list_by_status(self, status: str) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE status = ? ORDER BY updated_at, rowid",
            (status,),
        )
        return [task_row_to_dict(row) for row in rows]

    def list_runnable_pending(self) -> List[Dict[str, Any]]:
        """
        Pending leaf tasks whose upstream dependencies are all completed, oldest first.
        """
        rows = self.db.fetchall(
            f"""
            SELECT {QUALIFIED_TASK_COLUMNS}
            FROM tasks t
            WHERE t.status = 'pending'
              AND NOT EXISTS (SELECT 1 FROM tasks c WHERE c.parent_id = t.id)
              AND NOT EXISTS (
                  SELECT 1
                  FROM dependencies d
                  JOIN tasks up ON up.id = d.dependee_task_id
                  WHERE d.dependency_task_id = t.id AND up.status != 'completed'
              )
            ORDER BY t.created_at, t.rowid
            """
        )
        return [task_row_to_dict(row) for row in rows]

    def update_fields(self, task_id: str, fields: Dict[str, Any], expected_version: int, now: str) -> bool:
        """
        Replace the given columns and bump the version.

        The write is guarded by the expected version; returns False when
        another writer got there first.
        """
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in fields]
        params = list(fields.values())
        assignments += ["version = version + 1", "updated_at = ?"]
        params += [now, task_id, expected_version]
        cursor = self.db.execute(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ? AND version = ?",
            params,
        )
        return cursor.rowcount == 1

    def update_parent(self, task_id: str, parent_id: Optional[str], expected_version: int, now: str) -> bool:
        """
        Re-parent task_id under the version guard.

        Returns:
            False when another writer changed the row first
        """
        cursor = self.db.execute(
            """
            UPDATE tasks
            SET parent_id = ?, version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (parent_id, now, task_id, expected_version),
        )
        return cursor.rowcount == 1

    def insert_history(self, task: Dict[str, Any], now: str) -> None:
        """Record the pre-update snapshot of a task."""
        self.db.execute(
            """
            INSERT INTO task_history
                (task_id, title, description, status, assignee, estimate, version, changed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (task["id"], task["title"], task["description"], task["status"],
             task["assignee"], task["estimate"], task["version"], now),
        )

    def list_history(self, task_id: str) -> List[Dict[str, Any]]:
        rows = self.db.fetchall(
            """
            SELECT title, description, status, assignee, estimate, version, changed_at
            FROM task_history
            WHERE task_id = ?
            ORDER BY id
            """,
            (task_id,),
        )
        return [
            {
                "title": row["title"],
                "description": row["description"],
                "status": row["status"],
                "assignee": row["assignee"],
                "estimate": row["estimate"],
                "version": row["version"],
                "changedAt": row["changed_at"],
            }
            for row in rows
        ]

    def delete(self, task_id: str) -> bool:
        """
        Delete a task. Descendants, associations and dependency edges cascade.

        Returns:
            True if a row was removed
        """
        cursor = self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0
