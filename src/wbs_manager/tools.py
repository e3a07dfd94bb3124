"""
WBS Tools

One tool class per named operation. Tools validate their arguments with the
pydantic models in models.py, call into the services and return a payload.

Two entry points:
- run(arguments): returns the payload and raises WbsError subclasses; used by
  the JSON-RPC dispatcher, which maps errors to protocol codes
- apply(**kwargs): async, returns a JSON string with the standard
  success/error envelope; used by the FastMCP server registration
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

from pydantic import ValidationError as PydanticValidationError

from .database import WbsDatabase
from .errors import ValidationError, WbsError
from .gantt import GanttProjector
from .models import (
    ArtifactCreateInput,
    ArtifactIdInput,
    ArtifactUpdateInput,
    CompletionRequestInput,
    DependencyCreateInput,
    DependencyIdInput,
    DependencyUpdateInput,
    EmptyInput,
    GanttInput,
    TaskCreateInput,
    TaskIdInput,
    TaskImportInput,
    TaskListInput,
    TaskMoveInput,
    TaskUpdateInput,
    WbsModel,
)
from .task_service import ArtifactService, DependencyService, TaskService

logger = logging.getLogger(__name__)


class BaseTool(ABC):
    """
    Abstract base class for WBS tools.

    Subclasses set name, description and input_model, and implement
    execute(). Argument validation, error translation and JSON formatting
    are shared here.
    """

    name: str = ""
    description: str = ""
    input_model: Type[WbsModel] = EmptyInput
    success_message: str = "OK"

    def __init__(self, database: WbsDatabase):
        self.db = database
        self.tasks = TaskService(database)
        self.artifacts = ArtifactService(database)
        self.dependencies = DependencyService(database)
        self.gantt = GanttProjector(database)

    @classmethod
    def input_schema(cls) -> Dict[str, Any]:
        """
        JSON schema of the tool arguments, always an object schema at the top.

        Recursive models come back from pydantic as a bare $ref into $defs;
        the referenced definition is lifted to the top level and $defs kept
        beside it so nested references still resolve.
        """
        schema = cls.input_model.model_json_schema(by_alias=True)
        ref = schema.get("$ref")
        if ref and ref.startswith("#/$defs/"):
            definitions = schema.get("$defs", {})
            resolved = dict(definitions[ref.rsplit("/", 1)[-1]])
            resolved["$defs"] = definitions
            schema = resolved
        return schema

    def parse_arguments(self, arguments: Dict[str, Any]) -> WbsModel:
        try:
            return self.input_model.model_validate(arguments or {})
        except PydanticValidationError as e:
            problems = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid arguments for {self.name}",
                reason="invalid-arguments",
                errors=problems,
            ) from e

    @abstractmethod
    def execute(self, args: Any) -> Any:
        """Perform the operation and return a JSON-serializable payload."""

    def run(self, arguments: Dict[str, Any]) -> Any:
        return self.execute(self.parse_arguments(arguments))

    async def apply(self, **kwargs) -> str:
        """
        Run the tool and wrap the outcome in the success/error envelope.

        Returns:
            JSON string with operation results or error information
        """
        try:
            payload = self.run(kwargs)
        except WbsError as e:
            logger.warning(f"{self.name} failed: {e.message}")
            return self._format_error_response(e.message, code=e.code, error=e.to_error_data())
        except Exception as e:
            logger.exception(f"Unexpected error in {self.name}")
            return self._format_error_response(
                f"Internal error: {e}", code=-32603, error={"kind": "internal", "retryable": False}
            )
        return self._format_success_response(self.success_message, data=payload)

    def _format_success_response(self, message: str, **kwargs) -> str:
        response = {
            "success": True,
            "message": message,
            **kwargs
        }
        return json.dumps(response)

    def _format_error_response(self, message: str, **kwargs) -> str:
        response = {
            "success": False,
            "message": message,
            **kwargs
        }
        return json.dumps(response)


class CreateTaskTool(BaseTool):
    name = "task.create"
    description = (
        "Create a task, optionally under parentId, with deliverables, prerequisites and "
        "completion conditions. Status is 'pending' when title, description and estimate "
        "are all given, 'draft' otherwise."
    )
    input_model = TaskCreateInput
    success_message = "Task created"

    def execute(self, args: TaskCreateInput) -> Dict[str, Any]:
        return self.tasks.create_task(args)


class GetTaskTool(BaseTool):
    name = "task.get"
    description = "Fetch a task with its full descendant tree, associations and dependency edges."
    input_model = TaskIdInput
    success_message = "Task retrieved"

    def execute(self, args: TaskIdInput) -> Dict[str, Any]:
        return self.tasks.get_task(args.task_id)


class UpdateTaskTool(BaseTool):
    name = "task.update"
    description = (
        "Partially update a task. Only supplied fields change; supplied collections are "
        "replaced in full (an empty list clears). Pass ifVersion for optimistic locking."
    )
    input_model = TaskUpdateInput
    success_message = "Task updated"

    def execute(self, args: TaskUpdateInput) -> Dict[str, Any]:
        return self.tasks.update_task(args)


class ListTasksTool(BaseTool):
    name = "task.list"
    description = "List direct children of parentId, or root tasks when parentId is omitted."
    input_model = TaskListInput
    success_message = "Tasks listed"

    def execute(self, args: TaskListInput) -> Dict[str, Any]:
        return {"tasks": self.tasks.list_tasks(args.parent_id)}


class ListDraftTasksTool(BaseTool):
    name = "task.listDrafts"
    description = "List draft tasks under parentId, or root-level drafts when parentId is omitted."
    input_model = TaskListInput
    success_message = "Draft tasks listed"

    def execute(self, args: TaskListInput) -> Dict[str, Any]:
        return {"tasks": self.tasks.list_draft_tasks(args.parent_id)}


class DeleteTaskTool(BaseTool):
    name = "task.delete"
    description = "Delete a task together with its subtree, associations and dependency edges."
    input_model = TaskIdInput
    success_message = "Task deleted"

    def execute(self, args: TaskIdInput) -> Dict[str, Any]:
        return self.tasks.delete_task(args.task_id)


class MoveTaskTool(BaseTool):
    name = "task.move"
    description = "Move a task under newParentId, or to the root level when newParentId is null."
    input_model = TaskMoveInput
    success_message = "Task moved"

    def execute(self, args: TaskMoveInput) -> Dict[str, Any]:
        return self.tasks.move_task(args.task_id, args.new_parent_id)


class ImportTasksTool(BaseTool):
    name = "task.import"
    description = "Create several tasks (with nested children) in one transaction."
    input_model = TaskImportInput
    success_message = "Tasks imported"

    def execute(self, args: TaskImportInput) -> Dict[str, Any]:
        return {"tasks": self.tasks.import_tasks(args.tasks, args.parent_id)}


class TaskHistoryTool(BaseTool):
    name = "task.history"
    description = "List the pre-update snapshots recorded for a task, oldest first."
    input_model = TaskIdInput
    success_message = "Task history retrieved"

    def execute(self, args: TaskIdInput) -> Dict[str, Any]:
        return {"history": self.tasks.get_history(args.task_id)}


class CreateArtifactTool(BaseTool):
    name = "artifact.create"
    description = "Create a reusable artifact. Titles are unique."
    input_model = ArtifactCreateInput
    success_message = "Artifact created"

    def execute(self, args: ArtifactCreateInput) -> Dict[str, Any]:
        return self.artifacts.create_artifact(args.title, args.uri, args.description)


class GetArtifactTool(BaseTool):
    name = "artifact.get"
    description = "Fetch one artifact."
    input_model = ArtifactIdInput
    success_message = "Artifact retrieved"

    def execute(self, args: ArtifactIdInput) -> Dict[str, Any]:
        return self.artifacts.get_artifact(args.artifact_id)


class ListArtifactsTool(BaseTool):
    name = "artifact.list"
    description = "List all artifacts ordered by title."
    input_model = EmptyInput
    success_message = "Artifacts listed"

    def execute(self, args: EmptyInput) -> Dict[str, Any]:
        return {"artifacts": self.artifacts.list_artifacts()}


class UpdateArtifactTool(BaseTool):
    name = "artifact.update"
    description = "Partially update an artifact. Pass ifVersion for optimistic locking."
    input_model = ArtifactUpdateInput
    success_message = "Artifact updated"

    def execute(self, args: ArtifactUpdateInput) -> Dict[str, Any]:
        return self.artifacts.update_artifact(args)


class DeleteArtifactTool(BaseTool):
    name = "artifact.delete"
    description = "Delete an artifact. Task associations referencing it are removed."
    input_model = ArtifactIdInput
    success_message = "Artifact deleted"

    def execute(self, args: ArtifactIdInput) -> Dict[str, Any]:
        return self.artifacts.delete_artifact(args.artifact_id)


class CreateDependencyTool(BaseTool):
    name = "dependency.create"
    description = "Record that fromTaskId depends on toTaskId, optionally naming the artifacts passed along."
    input_model = DependencyCreateInput
    success_message = "Dependency created"

    def execute(self, args: DependencyCreateInput) -> Dict[str, Any]:
        return self.dependencies.create_dependency(args.from_task_id, args.to_task_id, args.artifacts)


class GetDependencyTool(BaseTool):
    name = "dependency.get"
    description = "Fetch one dependency edge with its artifacts."
    input_model = DependencyIdInput
    success_message = "Dependency retrieved"

    def execute(self, args: DependencyIdInput) -> Dict[str, Any]:
        return self.dependencies.get_dependency(args.dependency_id)


class UpdateDependencyTool(BaseTool):
    name = "dependency.update"
    description = "Replace the endpoints and artifact list of a dependency edge."
    input_model = DependencyUpdateInput
    success_message = "Dependency updated"

    def execute(self, args: DependencyUpdateInput) -> Dict[str, Any]:
        return self.dependencies.update_dependency(
            args.dependency_id, args.from_task_id, args.to_task_id, args.artifacts
        )


class DeleteDependencyTool(BaseTool):
    name = "dependency.delete"
    description = "Delete a dependency edge."
    input_model = DependencyIdInput
    success_message = "Dependency deleted"

    def execute(self, args: DependencyIdInput) -> Dict[str, Any]:
        return self.dependencies.delete_dependency(args.dependency_id)


class GanttSnapshotTool(BaseTool):
    name = "gantt.snapshot"
    description = (
        "Project tasks below parentId (the whole forest when omitted) into a Gantt view. "
        "With since, only changes after that ISO-8601 time are returned."
    )
    input_model = GanttInput
    success_message = "Gantt snapshot generated"

    def execute(self, args: GanttInput) -> Dict[str, Any]:
        return self.gantt.snapshot(args.parent_id, args.since)


class GetNextTaskTool(BaseTool):
    name = "agent.getNextTask"
    description = (
        "Return the task to work on: the current in-progress task, or else the oldest pending "
        "leaf whose dependencies are completed (which is then marked in-progress)."
    )
    input_model = EmptyInput
    success_message = "Next task resolved"

    def execute(self, args: EmptyInput) -> Dict[str, Any]:
        return self.tasks.get_next_task()


class RequestCompletionTool(BaseTool):
    name = "agent.requestCompletion"
    description = (
        "Ask to complete a task. Every completion condition must be audited with ok=true; "
        "otherwise the request is rejected and the unmet conditions are returned."
    )
    input_model = CompletionRequestInput
    success_message = "Completion request processed"

    def execute(self, args: CompletionRequestInput) -> Dict[str, Any]:
        return self.tasks.request_completion(args.task_id, args.audits)


# Tool registry for dispatcher and MCP server registration
AVAILABLE_TOOLS = {
    tool.name: tool
    for tool in (
        CreateTaskTool,
        GetTaskTool,
        UpdateTaskTool,
        ListTasksTool,
        ListDraftTasksTool,
        DeleteTaskTool,
        MoveTaskTool,
        ImportTasksTool,
        TaskHistoryTool,
        CreateArtifactTool,
        GetArtifactTool,
        ListArtifactsTool,
        UpdateArtifactTool,
        DeleteArtifactTool,
        CreateDependencyTool,
        GetDependencyTool,
        UpdateDependencyTool,
        DeleteDependencyTool,
        GanttSnapshotTool,
        GetNextTaskTool,
        RequestCompletionTool,
    )
}


def create_tool_instance(tool_name: str, database: WbsDatabase) -> BaseTool:
    """
    Factory function to create tool instances by name.

    Raises:
        KeyError: If tool_name is not found in AVAILABLE_TOOLS
    """
    if tool_name not in AVAILABLE_TOOLS:
        raise KeyError(f"Unknown tool '{tool_name}'. Available tools: {list(AVAILABLE_TOOLS.keys())}")
    return AVAILABLE_TOOLS[tool_name](database)
