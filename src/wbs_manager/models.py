"""
Pydantic models for WBS tool argument validation.

Arguments arrive in camelCase (taskId, parentId, ifVersion, ...). Fields are
declared in snake_case with camelCase aliases; both spellings are accepted.
For partial updates, model_fields_set tells an omitted field apart from one
explicitly set to null or to an empty list.
"""

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WbsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ArtifactRef(WbsModel):
    """One deliverable or prerequisite entry. Entries without artifactId are skipped."""

    artifact_id: Optional[str] = None
    crud_operations: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("crudOperations", "crud", "crud_operations"),
        description="Free-text CRUD tag, e.g. 'C' or 'RU'",
    )

    @field_validator("crud_operations", mode="before")
    @classmethod
    def blank_crud(cls, v):
        return _blank_to_none(v)


class ConditionInput(WbsModel):
    """One completion condition. Blank descriptions are skipped."""

    description: Optional[str] = None


def _coerce_refs(value: Any) -> Any:
    # A bare string is shorthand for {"artifactId": value}.
    if isinstance(value, list):
        return [{"artifactId": item} if isinstance(item, str) else item for item in value]
    return value


def _coerce_conditions(value: Any) -> Any:
    if isinstance(value, list):
        return [{"description": item} if isinstance(item, str) else item for item in value]
    return value


class TaskCollections(WbsModel):
    deliverables: Optional[List[ArtifactRef]] = None
    prerequisites: Optional[List[ArtifactRef]] = None
    completion_conditions: Optional[List[ConditionInput]] = None

    @field_validator("deliverables", "prerequisites", mode="before")
    @classmethod
    def coerce_refs(cls, v):
        return _coerce_refs(v)

    @field_validator("completion_conditions", mode="before")
    @classmethod
    def coerce_conditions(cls, v):
        return _coerce_conditions(v)


class TaskCreateInput(TaskCollections):
    title: Optional[str] = Field(None, description="Task title, defaults to 'New Task' when blank")
    description: Optional[str] = None
    parent_id: Optional[str] = None
    assignee: Optional[str] = None
    estimate: Optional[str] = Field(None, description="Duration such as '3d', '4h' or 'PT2H'")
    details: Optional[str] = None
    children: Optional[List["TaskCreateInput"]] = Field(
        None, description="Nested tasks created under this one (import only)"
    )

    @field_validator("parent_id", mode="before")
    @classmethod
    def blank_parent(cls, v):
        return _blank_to_none(v)


TaskCreateInput.model_rebuild()


class TaskUpdateInput(TaskCollections):
    task_id: str = Field(min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    assignee: Optional[str] = None
    status: Optional[str] = None
    estimate: Optional[str] = None
    if_version: Optional[int] = Field(None, description="Expected current version")


class TaskIdInput(WbsModel):
    task_id: str = Field(min_length=1)


class TaskMoveInput(WbsModel):
    task_id: str = Field(min_length=1)
    new_parent_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("newParentId", "parentId", "new_parent_id"),
    )

    @field_validator("new_parent_id", mode="before")
    @classmethod
    def blank_parent(cls, v):
        return _blank_to_none(v)


class TaskListInput(WbsModel):
    parent_id: Optional[str] = None

    @field_validator("parent_id", mode="before")
    @classmethod
    def blank_parent(cls, v):
        return _blank_to_none(v)


class TaskImportInput(WbsModel):
    parent_id: Optional[str] = None
    tasks: List[TaskCreateInput] = Field(default_factory=list)

    @field_validator("parent_id", mode="before")
    @classmethod
    def blank_parent(cls, v):
        return _blank_to_none(v)


class ArtifactCreateInput(WbsModel):
    title: str
    uri: Optional[str] = None
    description: Optional[str] = None


class ArtifactUpdateInput(WbsModel):
    artifact_id: str = Field(min_length=1)
    title: Optional[str] = None
    uri: Optional[str] = None
    description: Optional[str] = None
    if_version: Optional[int] = None


class ArtifactIdInput(WbsModel):
    artifact_id: str = Field(min_length=1)


class DependencyCreateInput(WbsModel):
    from_task_id: str = Field(min_length=1, description="Task that depends on the other")
    to_task_id: str = Field(min_length=1, description="Upstream task")
    artifacts: List[str] = Field(default_factory=list)

    @field_validator("artifacts", mode="before")
    @classmethod
    def artifact_ids(cls, v):
        # Accept [{"artifactId": ...}] as well as plain ids.
        if v is None:
            return []
        if isinstance(v, list):
            return [item.get("artifactId") if isinstance(item, dict) else item for item in v]
        return v


class DependencyUpdateInput(DependencyCreateInput):
    dependency_id: str = Field(min_length=1)


class DependencyIdInput(WbsModel):
    dependency_id: str = Field(min_length=1)


class GanttInput(WbsModel):
    parent_id: Optional[str] = None
    since: Optional[str] = Field(None, description="ISO-8601 timestamp for incremental snapshots")

    @field_validator("parent_id", "since", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)


class CompletionAudit(WbsModel):
    id: str
    ok: bool = False


class CompletionRequestInput(WbsModel):
    task_id: str = Field(min_length=1)
    audits: List[CompletionAudit] = Field(default_factory=list)


class EmptyInput(WbsModel):
    pass
