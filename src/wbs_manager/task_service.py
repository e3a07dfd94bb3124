"""
Task, Artifact and Dependency Services

Orchestrates repository calls into whole operations. Every mutation runs as a
single transaction: validation happens first, the write is guarded by the
version the caller saw, and any failure rolls back everything the operation
touched.

Key behaviours:
- Status is derived at creation: pending when title, description and
  estimate are all present, draft otherwise
- Collections (deliverables, prerequisites, completion conditions) use
  full-replace sync; omitted means untouched, empty list means cleared
- Moves reject self-parenting and any re-parenting that would close a cycle
- ifVersion mismatches raise VersionConflictError before anything is written
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .artifact_repository import ArtifactRepository
from .association_repository import find_missing_artifacts
from .database import WbsDatabase, utc_now
from .errors import (
    ArtifactNotFoundError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from .models import (
    ArtifactUpdateInput,
    CompletionAudit,
    TaskCreateInput,
    TaskUpdateInput,
)
from .task_repository import TaskRepository

logger = logging.getLogger(__name__)

DEFAULT_TASK_TITLE = "New Task"

# Upper bound on ancestor-walk steps during move validation.
MAX_ANCESTOR_DEPTH = 10000

SCALAR_TASK_FIELDS = ("title", "description", "details", "assignee", "status", "estimate")
AUTO_STATUSES = ("draft", "pending")


def _present(value: Optional[str]) -> bool:
    return bool(value and str(value).strip())


def derive_status(title: Optional[str], description: Optional[str], estimate: Optional[str]) -> str:
    """pending when title, description and estimate are all non-blank, else draft."""
    if _present(title) and _present(description) and _present(estimate):
        return "pending"
    return "draft"


class TaskService:
    """Task lifecycle: create, read, update, move, delete, import and agent workflow."""

    def __init__(self, db: WbsDatabase):
        self.db = db
        self.tasks = TaskRepository(db)

    # -- reads -----------------------------------------------------------

    def get_task(self, task_id: str) -> Dict[str, Any]:
        task = self.tasks.get_tree(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def list_tasks(self, parent_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.tasks.list_children(parent_id, status)

    def list_draft_tasks(self, parent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.tasks.list_children(parent_id, "draft")

    def get_history(self, task_id: str) -> List[Dict[str, Any]]:
        if not self.tasks.exists(task_id):
            raise NotFoundError("task", task_id)
        return self.tasks.list_history(task_id)

    # -- create / import -------------------------------------------------

    def create_task(self, data: TaskCreateInput) -> Dict[str, str]:
        """
        Create one task, its collections and any nested children atomically.

        Raises:
            NotFoundError: parentId does not exist
            ArtifactNotFoundError: a deliverable/prerequisite references a missing artifact
        """
        now = utc_now()
        with self.db.transaction():
            task_id = self.insert_task_tree(data, data.parent_id, now)
        logger.info(f"Created task {task_id}")
        return {"taskId": task_id}

    def import_tasks(self, entries: Sequence[TaskCreateInput], parent_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Create a batch of tasks (with nested children) in one transaction.

        Entries without their own parentId are placed under parent_id.
        Returns the created task trees in input order.
        """
        now = utc_now()
        created_ids = []
        with self.db.transaction():
            for entry in entries:
                target_parent = entry.parent_id if entry.parent_id is not None else parent_id
                created_ids.append(self.insert_task_tree(entry, target_parent, now))
        logger.info(f"Imported {len(created_ids)} task(s)")
        return [self.get_task(task_id) for task_id in created_ids]

    def insert_task_tree(self, data: TaskCreateInput, parent_id: Optional[str], now: str) -> str:
        """Insert data and its nested children. Caller must hold a transaction."""
        if parent_id is not None and not self.tasks.exists(parent_id):
            raise NotFoundError("task", parent_id, f"Parent task not found: {parent_id}")

        status = derive_status(data.title, data.description, data.estimate)
        title = data.title if _present(data.title) else DEFAULT_TASK_TITLE
        task_id = self.tasks.insert(
            title=title,
            description=data.description,
            parent_id=parent_id,
            assignee=data.assignee,
            status=status,
            estimate=data.estimate,
            details=data.details,
            now=now,
        )
        self._sync_collections(task_id, data, now)
        for child in data.children or []:
            self.insert_task_tree(child, task_id, now)
        return task_id

    def _sync_collections(self, task_id: str, data: Any, now: str) -> None:
        provided = data.model_fields_set
        if "deliverables" in provided and data.deliverables is not None:
            self.tasks.task_artifacts.sync(task_id, "deliverable", data.deliverables, now)
        if "prerequisites" in provided and data.prerequisites is not None:
            self.tasks.task_artifacts.sync(task_id, "prerequisite", data.prerequisites, now)
        if "completion_conditions" in provided and data.completion_conditions is not None:
            self.tasks.conditions.sync(task_id, data.completion_conditions, now)

    # -- update ----------------------------------------------------------

    def update_task(self, data: TaskUpdateInput) -> Dict[str, Any]:
        """
        Apply a partial update under optimistic locking.

        Only fields present in the request are written. The version is bumped
        even when nothing scalar changed.

        Raises:
            NotFoundError: task does not exist
            VersionConflictError: ifVersion differs from the stored version
            ValidationError: title set to blank
        """
        task_id = data.task_id
        current = self.tasks.get_row(task_id)
        if current is None:
            raise NotFoundError("task", task_id)
        if data.if_version is not None and data.if_version != current["version"]:
            raise VersionConflictError(task_id, data.if_version, current["version"])

        fields = {name: getattr(data, name) for name in SCALAR_TASK_FIELDS if name in data.model_fields_set}
        if "title" in fields and not _present(fields["title"]):
            raise ValidationError("Task title cannot be empty", reason="empty-field", field="title")
        if "description" in fields and fields["description"] is None:
            fields["description"] = ""
        # A null status keeps the stored one.
        if "status" in fields and fields["status"] is None:
            del fields["status"]

        # Draft and pending are derived states until a caller sets a status.
        if "status" not in fields and current["status"] in AUTO_STATUSES:
            merged = {**current, **fields}
            derived = derive_status(merged["title"], merged["description"], merged["estimate"])
            if derived != current["status"]:
                fields["status"] = derived

        now = utc_now()
        with self.db.transaction():
            self.tasks.insert_history(current, now)
            if not self.tasks.update_fields(task_id, fields, current["version"], now):
                self._raise_lost_race(task_id, current["version"])
            self._sync_collections(task_id, data, now)

        logger.info(f"Updated task {task_id} to version {current['version'] + 1}")
        return self.get_task(task_id)

    def _raise_lost_race(self, task_id: str, expected: int) -> None:
        latest = self.tasks.get_row(task_id)
        if latest is None:
            raise NotFoundError("task", task_id)
        raise VersionConflictError(task_id, expected, latest["version"])

    # -- move ------------------------------------------------------------

    def move_task(self, task_id: str, new_parent_id: Optional[str]) -> Dict[str, Any]:
        """
        Re-parent a task (and its subtree). None moves it to the root level.

        Raises:
            NotFoundError: task or new parent does not exist
            ValidationError: reason "self-parent" or "cycle"
        """
        current = self.tasks.get_row(task_id)
        if current is None:
            raise NotFoundError("task", task_id)

        if new_parent_id == task_id:
            raise ValidationError("A task cannot be its own parent", reason="self-parent", id=task_id)
        if new_parent_id is not None:
            if not self.tasks.exists(new_parent_id):
                raise NotFoundError("task", new_parent_id, f"Parent task not found: {new_parent_id}")
            if self._is_in_ancestry(task_id, new_parent_id):
                raise ValidationError(
                    f"Moving {task_id} under {new_parent_id} would create a cycle",
                    reason="cycle",
                    id=task_id,
                    newParentId=new_parent_id,
                )

        if current["parentId"] == new_parent_id:
            return self.get_task(task_id)

        now = utc_now()
        with self.db.transaction():
            if not self.tasks.update_parent(task_id, new_parent_id, current["version"], now):
                self._raise_lost_race(task_id, current["version"])

        logger.info(f"Moved task {task_id} from {current['parentId']} to {new_parent_id}")
        return self.get_task(task_id)

    def _is_in_ancestry(self, task_id: str, start_id: str) -> bool:
        """Walk upward from start_id (inclusive) looking for task_id."""
        cursor: Optional[str] = start_id
        for _ in range(MAX_ANCESTOR_DEPTH):
            if cursor is None:
                return False
            if cursor == task_id:
                return True
            found, parent_id = self.tasks.get_parent(cursor)
            if not found:
                return False
            cursor = parent_id
        logger.warning(f"Ancestor walk from {start_id} exceeded {MAX_ANCESTOR_DEPTH} steps")
        return False

    # -- delete ----------------------------------------------------------

    def delete_task(self, task_id: str) -> Dict[str, bool]:
        with self.db.transaction():
            if not self.tasks.delete(task_id):
                raise NotFoundError("task", task_id)
        logger.info(f"Deleted task {task_id} and its subtree")
        return {"deleted": True}

    # -- agent workflow --------------------------------------------------

    def get_next_task(self) -> Dict[str, Any]:
        """
        Hand out work: an in-progress task if one exists, else start the
        oldest pending leaf whose upstream dependencies are all completed.
        """
        in_progress = self.tasks.list_by_status("in-progress")
        if in_progress:
            return {"task": self.get_task(in_progress[0]["id"]), "started": False}

        candidates = self.tasks.list_runnable_pending()
        if not candidates:
            return {"task": None, "started": False}

        candidate = candidates[0]
        now = utc_now()
        with self.db.transaction():
            if not self.tasks.update_fields(candidate["id"], {"status": "in-progress"}, candidate["version"], now):
                self._raise_lost_race(candidate["id"], candidate["version"])
        logger.info(f"Started task {candidate['id']}")
        return {"task": self.get_task(candidate["id"]), "started": True}

    def request_completion(self, task_id: str, audits: Sequence[CompletionAudit]) -> Dict[str, Any]:
        """
        Complete a task once every completion condition has a passing audit.

        A rejected request changes nothing and reports the unmet conditions.
        """
        task = self.get_task(task_id)
        conditions = task["completionConditions"]
        passed = {audit.id for audit in audits if audit.ok}
        unmet = [condition for condition in conditions if condition["id"] not in passed]
        if unmet:
            return {
                "accepted": False,
                "taskId": task_id,
                "unmetConditions": unmet,
                "completionConditions": conditions,
            }

        now = utc_now()
        with self.db.transaction():
            if not self.tasks.update_fields(task_id, {"status": "completed"}, task["version"], now):
                self._raise_lost_race(task_id, task["version"])
        logger.info(f"Completed task {task_id}")
        return {"accepted": True, "task": self.get_task(task_id)}


class ArtifactService:
    """Artifact CRUD with unique titles and optimistic locking."""

    def __init__(self, db: WbsDatabase):
        self.db = db
        self.artifacts = ArtifactRepository(db)

    def create_artifact(self, title: str, uri: Optional[str] = None,
                        description: Optional[str] = None) -> Dict[str, Any]:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Artifact title is required", reason="empty-field", field="title")
        if self.artifacts.find_by_title(title) is not None:
            raise ValidationError(f"Artifact title already exists: {title}", reason="duplicate", field="title")

        now = utc_now()
        with self.db.transaction():
            artifact_id = self.artifacts.insert(title, uri, description, now)
        logger.info(f"Created artifact {artifact_id}")
        return self.get_artifact(artifact_id)

    def get_artifact(self, artifact_id: str) -> Dict[str, Any]:
        artifact = self.artifacts.get(artifact_id)
        if artifact is None:
            raise NotFoundError("artifact", artifact_id)
        return artifact

    def list_artifacts(self) -> List[Dict[str, Any]]:
        return self.artifacts.list()

    def update_artifact(self, data: ArtifactUpdateInput) -> Dict[str, Any]:
        current = self.get_artifact(data.artifact_id)
        if data.if_version is not None and data.if_version != current["version"]:
            raise VersionConflictError(data.artifact_id, data.if_version, current["version"])

        fields = {name: getattr(data, name) for name in ("title", "uri", "description")
                  if name in data.model_fields_set}
        if "title" in fields:
            title = (fields["title"] or "").strip()
            if not title:
                raise ValidationError("Artifact title is required", reason="empty-field", field="title")
            existing = self.artifacts.find_by_title(title)
            if existing is not None and existing["id"] != data.artifact_id:
                raise ValidationError(f"Artifact title already exists: {title}", reason="duplicate", field="title")
            fields["title"] = title

        now = utc_now()
        with self.db.transaction():
            if not self.artifacts.update(data.artifact_id, fields, current["version"], now):
                latest = self.artifacts.get(data.artifact_id)
                if latest is None:
                    raise NotFoundError("artifact", data.artifact_id)
                raise VersionConflictError(data.artifact_id, current["version"], latest["version"])
        return self.get_artifact(data.artifact_id)

    def delete_artifact(self, artifact_id: str) -> Dict[str, bool]:
        with self.db.transaction():
            if not self.artifacts.delete(artifact_id):
                raise NotFoundError("artifact", artifact_id)
        logger.info(f"Deleted artifact {artifact_id}")
        return {"deleted": True}


class DependencyService:
    """Task-to-task dependency edges. The graph stays acyclic."""

    def __init__(self, db: WbsDatabase):
        self.db = db
        self.tasks = TaskRepository(db)
        self.dependencies = self.tasks.dependencies

    def get_dependency(self, dependency_id: str) -> Dict[str, Any]:
        dependency = self.dependencies.get(dependency_id)
        if dependency is None:
            raise NotFoundError("dependency", dependency_id)
        return dependency

    def create_dependency(self, from_task_id: str, to_task_id: str,
                          artifact_ids: Sequence[str] = ()) -> Dict[str, Any]:
        artifact_ids = self._validate_edge(from_task_id, to_task_id, artifact_ids)

        now = utc_now()
        with self.db.transaction():
            dependency_id = self.dependencies.insert(from_task_id, to_task_id, now)
            self.dependencies.sync_artifacts(dependency_id, artifact_ids, now)
        logger.info(f"Created dependency {dependency_id}: {from_task_id} -> {to_task_id}")
        return self.get_dependency(dependency_id)

    def update_dependency(self, dependency_id: str, from_task_id: str, to_task_id: str,
                          artifact_ids: Sequence[str] = ()) -> Dict[str, Any]:
        self.get_dependency(dependency_id)
        artifact_ids = self._validate_edge(from_task_id, to_task_id, artifact_ids, ignore_id=dependency_id)

        now = utc_now()
        with self.db.transaction():
            self.dependencies.update_endpoints(dependency_id, from_task_id, to_task_id)
            self.dependencies.sync_artifacts(dependency_id, artifact_ids, now)
        logger.info(f"Updated dependency {dependency_id}: {from_task_id} -> {to_task_id}")
        return self.get_dependency(dependency_id)

    def delete_dependency(self, dependency_id: str) -> Dict[str, bool]:
        with self.db.transaction():
            if not self.dependencies.delete(dependency_id):
                raise NotFoundError("dependency", dependency_id)
        logger.info(f"Deleted dependency {dependency_id}")
        return {"deleted": True}

    def _validate_edge(self, from_task_id: str, to_task_id: str, artifact_ids: Sequence[str],
                       ignore_id: Optional[str] = None) -> List[str]:
        if from_task_id == to_task_id:
            raise ValidationError("A task cannot depend on itself", reason="self-dependency", id=from_task_id)
        for task_id in (from_task_id, to_task_id):
            if not self.tasks.exists(task_id):
                raise NotFoundError("task", task_id)

        existing = self.dependencies.find_edge(from_task_id, to_task_id)
        if existing is not None and existing != ignore_id:
            raise ValidationError(
                f"Dependency already exists: {from_task_id} -> {to_task_id}",
                reason="duplicate",
                dependencyId=existing,
            )
        if self.dependencies.would_create_cycle(from_task_id, to_task_id, ignore_id):
            raise ValidationError(
                f"Dependency {from_task_id} -> {to_task_id} would create a cycle",
                reason="cycle",
            )

        cleaned = [artifact_id.strip() for artifact_id in artifact_ids if artifact_id and artifact_id.strip()]
        missing = find_missing_artifacts(self.db, cleaned)
        if missing is not None:
            raise ArtifactNotFoundError(missing)
        return cleaned
