"""
Gantt Projection Engine

Read-only transform from the stored task tree to a flattened schedule view:
one entry per task with its WBS path, duration in hours, progress and lane,
plus the dependency edges that lie entirely inside the requested scope.

Estimate grammar, tried in order:
- unit tokens such as "1w2d4h" or "90m" (s, m, h, d = 8h, w = 40h)
- ISO-8601 durations such as "P1W2DT3H"
- bare numbers, read as hours
Anything else counts as 0 hours and is listed in the snapshot notes.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import WbsDatabase, utc_now
from .errors import NotFoundError, ValidationError
from .task_repository import MAX_TREE_DEPTH, TaskRepository

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 8
HOURS_PER_WEEK = 40

_UNIT_HOURS = {
    "s": 1 / 3600,
    "m": 1 / 60,
    "h": 1,
    "d": HOURS_PER_DAY,
    "w": HOURS_PER_WEEK,
}
_TOKEN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([smhdw])", re.IGNORECASE)
_ISO_PATTERN = re.compile(
    r"^P(?:(\d+(?:\.\d+)?)W)?(?:(\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)

_STATUS_PROGRESS = {
    "completed": 1.0,
    "done": 1.0,
    "in-progress": 0.5,
    "in_progress": 0.5,
    "blocked": 0.25,
}


@dataclass
class EstimateParse:
    duration_hours: float
    strategy: str  # token | iso8601 | numeric | unknown | absent


def parse_estimate_to_hours(raw: Optional[str]) -> EstimateParse:
    """Convert a free-text estimate into hours, rounded to 2 decimals."""
    if raw is None or not str(raw).strip():
        return EstimateParse(0.0, "absent")
    text = str(raw).strip()

    tokens = _TOKEN_PATTERN.findall(text)
    if tokens:
        total = sum(float(value) * _UNIT_HOURS[unit.lower()] for value, unit in tokens)
        return EstimateParse(round(total, 2), "token")

    iso = _ISO_PATTERN.match(text)
    if iso:
        weeks, days, hours, minutes, seconds = (float(part) if part else 0.0 for part in iso.groups())
        total = weeks * HOURS_PER_WEEK + days * HOURS_PER_DAY + hours + minutes / 60 + seconds / 3600
        return EstimateParse(round(total, 2), "iso8601")

    try:
        numeric = float(text)
    except ValueError:
        numeric = None
    if numeric is not None and math.isfinite(numeric):
        return EstimateParse(round(numeric, 2), "numeric")

    return EstimateParse(0.0, "unknown")


def status_to_progress(status: Optional[str]) -> float:
    return _STATUS_PROGRESS.get((status or "").lower(), 0.0)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC. None if malformed."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GanttProjector:
    """Builds Gantt snapshots. Stateless apart from the database handle."""

    def __init__(self, db: WbsDatabase):
        self.db = db
        self.tasks = TaskRepository(db)

    def snapshot(self, parent_id: Optional[str] = None, since: Optional[str] = None) -> Dict[str, Any]:
        """
        Project the tree below parent_id (the whole forest when None).

        Args:
            parent_id: Scope task; only its descendants are included
            since: ISO-8601 timestamp; only tasks updated strictly after it are returned

        Raises:
            ValidationError: since is not a valid timestamp
            NotFoundError: parent_id does not exist
        """
        if parent_id is not None and not parent_id.strip():
            parent_id = None
        since_date = None
        if since:
            since_date = parse_timestamp(since)
            if since_date is None:
                raise ValidationError(
                    f"Invalid since timestamp: {since}",
                    reason="invalid-timestamp",
                    hint="Use ISO-8601, e.g. 2025-01-01T00:00:00Z",
                )

        parent_lookup = self._ancestor_lookup(parent_id)
        rows = self.tasks.list_forest_rows(parent_id)
        for row in rows:
            parent_lookup[row["id"]] = row["parent_id"]

        order_lookup = self._order_lookup(rows)
        if since_date is None:
            selected = rows
        else:
            selected = [row for row in rows if self._after(row["updated_at"], since_date)]
        changed_ids = {row["id"] for row in selected}

        path_cache: Dict[str, List[str]] = {}
        unparsable: List[str] = []
        tasks = []
        for row in selected:
            estimate = parse_estimate_to_hours(row["estimate"])
            if estimate.strategy == "unknown":
                unparsable.append(row["id"])
            metadata: Dict[str, Any] = {
                "createdAt": row["created_at"],
                "updatedAt": row["updated_at"],
                "depth": row["depth"],
                "estimateParseStrategy": estimate.strategy,
            }
            if row["assignee"]:
                metadata["assignee"] = row["assignee"]
            if row["estimate"]:
                metadata["originalEstimate"] = row["estimate"]
            tasks.append({
                "id": row["id"],
                "label": row["title"],
                "estimate": {"durationHours": estimate.duration_hours},
                "progress": status_to_progress(row["status"]),
                "status": row["status"] or "unknown",
                "lane": row["assignee"] or "unassigned",
                "wbsPath": self._resolve_path(row["id"], parent_lookup, path_cache),
                "orderIndex": order_lookup.get(row["id"], 0),
                "metadata": metadata,
            })

        scope_ids = {row["id"] for row in rows}
        dependencies = []
        for dep in self.tasks.dependencies.list_all():
            if dep["fromTaskId"] not in scope_ids or dep["toTaskId"] not in scope_ids:
                continue
            if since_date is not None:
                created_after = self._after(dep["createdAt"], since_date)
                touches_changed = dep["fromTaskId"] in changed_ids or dep["toTaskId"] in changed_ids
                if not (created_after or touches_changed):
                    continue
            dependencies.append({
                "from": dep["fromTaskId"],
                "to": dep["toTaskId"],
                "type": "FS",
                "lagHours": 0,
                "metadata": {"dependencyId": dep["id"], "createdAt": dep["createdAt"]},
            })

        generated_at = utc_now()
        notes = []
        if since_date is not None:
            notes.append(f"Returned changes after since={since_date.isoformat()}")
        if not tasks:
            notes.append("No matching tasks were found.")
        if unparsable:
            notes.append(f"Tasks with unsupported estimate format: {', '.join(unparsable)}")

        logger.debug(f"Gantt snapshot for {parent_id or 'forest'}: {len(tasks)} task(s), {len(dependencies)} edge(s)")
        return {
            "metadata": {
                "parentId": parent_id,
                "generatedAt": generated_at,
                "anchor": {"start": generated_at},
            },
            "tasks": tasks,
            "dependencies": dependencies,
            "notes": notes,
        }

    def _ancestor_lookup(self, parent_id: Optional[str]) -> Dict[str, Optional[str]]:
        """Parent links of parent_id and all its ancestors."""
        if parent_id is None:
            return {}
        rows = self.db.fetchall(
            f"""
            WITH RECURSIVE ancestors(id, parent_id, depth) AS (
                SELECT id, parent_id, 0 FROM tasks WHERE id = ?
                UNION ALL
                SELECT t.id, t.parent_id, a.depth + 1
                FROM tasks t
                JOIN ancestors a ON t.id = a.parent_id
                WHERE a.depth < {MAX_TREE_DEPTH}
            )
            SELECT id, parent_id FROM ancestors
            """,
            (parent_id,),
        )
        if not rows:
            raise NotFoundError("task", parent_id)
        return {row["id"]: row["parent_id"] for row in rows}

    @staticmethod
    def _order_lookup(rows: List[Dict[str, Any]]) -> Dict[str, int]:
        siblings: Dict[Optional[str], List[Dict[str, Any]]] = {}
        for row in rows:
            siblings.setdefault(row["parent_id"], []).append(row)
        order = {}
        for group in siblings.values():
            group.sort(key=lambda r: (r["created_at"], r["title"], r["id"]))
            for index, row in enumerate(group):
                order[row["id"]] = index
        return order

    @staticmethod
    def _resolve_path(task_id: str, parent_lookup: Dict[str, Optional[str]],
                      cache: Dict[str, List[str]]) -> List[str]:
        chain = []
        cursor: Optional[str] = task_id
        while cursor is not None and cursor not in cache and len(chain) < MAX_TREE_DEPTH:
            chain.append(cursor)
            cursor = parent_lookup.get(cursor)
        path = list(cache[cursor]) if cursor is not None and cursor in cache else []
        for node_id in reversed(chain):
            path = path + [node_id]
            cache[node_id] = path
        return cache[task_id]

    @staticmethod
    def _after(value: Optional[str], since_date: datetime) -> bool:
        if not value:
            return False
        parsed = parse_timestamp(value)
        return parsed is not None and parsed > since_date
