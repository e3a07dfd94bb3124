"""
YAML WBS Importer

Transaction-safe import of a task tree from YAML. Artifacts listed at the top
level are matched by title and created when missing; task entries may refer
to artifacts by id or title. The whole document is imported atomically.

Expected shape:

    artifacts:
      - title: API spec
        uri: docs/api.md
    tasks:
      - title: Build API
        description: REST endpoints
        estimate: 3d
        deliverables: [API spec]
        completionConditions: [All endpoints tested]
        children:
          - title: Auth endpoint
            estimate: 4h
"""

import logging
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .artifact_repository import ArtifactRepository
from .database import WbsDatabase, utc_now
from .errors import ValidationError
from .models import TaskCreateInput
from .task_service import TaskService

logger = logging.getLogger(__name__)


def import_wbs(db: WbsDatabase, yaml_data: Dict[str, Any], parent_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Import artifacts and tasks from parsed YAML in one transaction.

    Args:
        db: WbsDatabase instance
        yaml_data: Parsed YAML document
        parent_id: Optional task under which top-level tasks are placed

    Returns:
        Dict with import statistics and the ids of created root tasks

    Raises:
        ValidationError: For malformed document structure
        NotFoundError / ArtifactNotFoundError: For dangling references
    """
    artifacts_data = yaml_data.get("artifacts") or []
    tasks_data = yaml_data.get("tasks") or []
    if not isinstance(artifacts_data, list):
        raise ValidationError("YAML 'artifacts' must be a list", reason="invalid-document")
    if not isinstance(tasks_data, list):
        raise ValidationError("YAML 'tasks' must be a list", reason="invalid-document")

    service = TaskService(db)
    artifacts = ArtifactRepository(db)
    stats = {
        "artifacts_created": 0,
        "artifacts_reused": 0,
        "tasks_created": 0,
        "task_ids": [],
    }

    now = utc_now()
    with db.transaction():
        title_to_id: Dict[str, str] = {}
        for artifact_data in artifacts_data:
            if not isinstance(artifact_data, dict) or not str(artifact_data.get("title") or "").strip():
                raise ValidationError("Each artifact must be a mapping with a 'title'", reason="invalid-document")
            title = str(artifact_data["title"]).strip()
            existing = artifacts.find_by_title(title)
            if existing is not None:
                title_to_id[title] = existing["id"]
                stats["artifacts_reused"] += 1
            else:
                title_to_id[title] = artifacts.insert(
                    title, artifact_data.get("uri"), artifact_data.get("description"), now
                )
                stats["artifacts_created"] += 1

        for index, task_data in enumerate(tasks_data):
            entry = _build_task_input(task_data, title_to_id, artifacts, f"tasks[{index}]")
            target_parent = entry.parent_id if entry.parent_id is not None else parent_id
            stats["task_ids"].append(service.insert_task_tree(entry, target_parent, now))
            stats["tasks_created"] += _count_tasks(entry)

    logger.info(
        f"Imported {stats['tasks_created']} task(s), created {stats['artifacts_created']} artifact(s)"
    )
    return stats


def import_wbs_from_file(db: WbsDatabase, yaml_file_path: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Import a WBS from a YAML file.

    Raises:
        FileNotFoundError: file does not exist
        ValidationError: file is not valid YAML or has the wrong shape
    """
    try:
        with open(yaml_file_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found: {yaml_file_path}")
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML format: {e}", reason="invalid-document") from e

    if not isinstance(yaml_data, dict):
        raise ValidationError("YAML file must contain a mapping at root level", reason="invalid-document")
    return import_wbs(db, yaml_data, parent_id)


def _build_task_input(task_data: Any, title_to_id: Dict[str, str], artifacts: ArtifactRepository,
                      location: str) -> TaskCreateInput:
    if not isinstance(task_data, dict):
        raise ValidationError(f"{location} must be a mapping", reason="invalid-document")

    data = dict(task_data)
    # YAML reads "estimate: 3" as a number.
    if isinstance(data.get("estimate"), (int, float)):
        data["estimate"] = str(data["estimate"])
    for key in ("deliverables", "prerequisites"):
        if key in data and data[key] is not None:
            data[key] = [_resolve_artifact_ref(ref, title_to_id, artifacts) for ref in data[key]]
    children = data.pop("children", None) or []
    if not isinstance(children, list):
        raise ValidationError(f"{location}.children must be a list", reason="invalid-document")

    try:
        entry = TaskCreateInput.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid task at {location}: {e}", reason="invalid-document") from e

    if children:
        entry.children = [
            _build_task_input(child, title_to_id, artifacts, f"{location}.children[{index}]")
            for index, child in enumerate(children)
        ]
    return entry


def _resolve_artifact_ref(ref: Any, title_to_id: Dict[str, str], artifacts: ArtifactRepository) -> Any:
    """Map a title (or {artifact: title}) to {artifactId: id}; ids pass through."""
    if isinstance(ref, dict):
        name = ref.get("artifactId") or ref.get("artifact")
        crud = ref.get("crudOperations") or ref.get("crud")
    else:
        name, crud = ref, None
    if not name:
        return {"artifactId": None}

    name = str(name).strip()
    artifact_id = title_to_id.get(name)
    if artifact_id is None:
        existing = artifacts.find_by_title(name)
        artifact_id = existing["id"] if existing else name
    return {"artifactId": artifact_id, "crudOperations": crud}


def _count_tasks(entry: TaskCreateInput) -> int:
    return 1 + sum(_count_tasks(child) for child in entry.children or [])
