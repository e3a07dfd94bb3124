"""
FastMCP Server for the WBS task manager

Registers every WBS tool on a FastMCP server so that agents can reach the
task tree over stdio, SSE or streamable HTTP. Each registered function is a
thin typed closure around a tool instance; FastMCP derives the input schema
from the signature.

Arguments left as None are not forwarded, so an omitted collection in an
update leaves the stored collection untouched.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .config import DEFAULT_SERVER_NAME, SERVER_VERSION
from .database import WbsDatabase
from .tools import AVAILABLE_TOOLS, create_tool_instance

logger = logging.getLogger(__name__)

SUPPORTED_TRANSPORTS = ("stdio", "sse", "http")


def _drop_none(**kwargs) -> Dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


class WbsMCPServer:
    """FastMCP server wrapper with tool registration and transport selection."""

    def __init__(
        self,
        database: WbsDatabase,
        server_name: str = DEFAULT_SERVER_NAME,
        server_version: str = SERVER_VERSION,
    ):
        self.database = database
        self.server_name = server_name
        self.server_version = server_version
        self.mcp_server: Optional[FastMCP] = None
        self._server_instructions = (
            f"{server_name} manages a work-breakdown tree of tasks, reusable artifacts, "
            "completion conditions and task dependencies. Use task.* tools to plan, "
            "gantt.snapshot to view the schedule and agent.* tools to pick up and finish work. "
            "Pass ifVersion on updates to avoid overwriting concurrent edits."
        )

    def _create_server(self) -> FastMCP:
        """Create the FastMCP instance and register all tools."""
        mcp = FastMCP(
            name=self.server_name,
            version=self.server_version,
            instructions=self._server_instructions,
        )
        tools = {name: create_tool_instance(name, self.database) for name in AVAILABLE_TOOLS}

        @mcp.tool(name="task.create", description=tools["task.create"].description)
        async def task_create(
            title: Optional[str] = None,
            description: Optional[str] = None,
            parentId: Optional[str] = None,
            assignee: Optional[str] = None,
            estimate: Optional[str] = None,
            details: Optional[str] = None,
            deliverables: Optional[List[Dict[str, Any]]] = None,
            prerequisites: Optional[List[Dict[str, Any]]] = None,
            completionConditions: Optional[List[Dict[str, Any]]] = None,
        ) -> str:
            return await tools["task.create"].apply(**_drop_none(
                title=title, description=description, parentId=parentId, assignee=assignee,
                estimate=estimate, details=details, deliverables=deliverables,
                prerequisites=prerequisites, completionConditions=completionConditions,
            ))

        @mcp.tool(name="task.get", description=tools["task.get"].description)
        async def task_get(taskId: str) -> str:
            return await tools["task.get"].apply(taskId=taskId)

        @mcp.tool(name="task.update", description=tools["task.update"].description)
        async def task_update(
            taskId: str,
            title: Optional[str] = None,
            description: Optional[str] = None,
            details: Optional[str] = None,
            assignee: Optional[str] = None,
            status: Optional[str] = None,
            estimate: Optional[str] = None,
            deliverables: Optional[List[Dict[str, Any]]] = None,
            prerequisites: Optional[List[Dict[str, Any]]] = None,
            completionConditions: Optional[List[Dict[str, Any]]] = None,
            ifVersion: Optional[int] = None,
        ) -> str:
            return await tools["task.update"].apply(**_drop_none(
                taskId=taskId, title=title, description=description, details=details,
                assignee=assignee, status=status, estimate=estimate, deliverables=deliverables,
                prerequisites=prerequisites, completionConditions=completionConditions,
                ifVersion=ifVersion,
            ))

        @mcp.tool(name="task.list", description=tools["task.list"].description)
        async def task_list(parentId: Optional[str] = None) -> str:
            return await tools["task.list"].apply(**_drop_none(parentId=parentId))

        @mcp.tool(name="task.listDrafts", description=tools["task.listDrafts"].description)
        async def task_list_drafts(parentId: Optional[str] = None) -> str:
            return await tools["task.listDrafts"].apply(**_drop_none(parentId=parentId))

        @mcp.tool(name="task.delete", description=tools["task.delete"].description)
        async def task_delete(taskId: str) -> str:
            return await tools["task.delete"].apply(taskId=taskId)

        @mcp.tool(name="task.move", description=tools["task.move"].description)
        async def task_move(taskId: str, newParentId: Optional[str] = None) -> str:
            return await tools["task.move"].apply(taskId=taskId, newParentId=newParentId)

        @mcp.tool(name="task.import", description=tools["task.import"].description)
        async def task_import(tasks: List[Dict[str, Any]], parentId: Optional[str] = None) -> str:
            return await tools["task.import"].apply(**_drop_none(tasks=tasks, parentId=parentId))

        @mcp.tool(name="task.history", description=tools["task.history"].description)
        async def task_history(taskId: str) -> str:
            return await tools["task.history"].apply(taskId=taskId)

        @mcp.tool(name="artifact.create", description=tools["artifact.create"].description)
        async def artifact_create(title: str, uri: Optional[str] = None,
                                  description: Optional[str] = None) -> str:
            return await tools["artifact.create"].apply(**_drop_none(
                title=title, uri=uri, description=description,
            ))

        @mcp.tool(name="artifact.get", description=tools["artifact.get"].description)
        async def artifact_get(artifactId: str) -> str:
            return await tools["artifact.get"].apply(artifactId=artifactId)

        @mcp.tool(name="artifact.list", description=tools["artifact.list"].description)
        async def artifact_list() -> str:
            return await tools["artifact.list"].apply()

        @mcp.tool(name="artifact.update", description=tools["artifact.update"].description)
        async def artifact_update(
            artifactId: str,
            title: Optional[str] = None,
            uri: Optional[str] = None,
            description: Optional[str] = None,
            ifVersion: Optional[int] = None,
        ) -> str:
            return await tools["artifact.update"].apply(**_drop_none(
                artifactId=artifactId, title=title, uri=uri, description=description,
                ifVersion=ifVersion,
            ))

        @mcp.tool(name="artifact.delete", description=tools["artifact.delete"].description)
        async def artifact_delete(artifactId: str) -> str:
            return await tools["artifact.delete"].apply(artifactId=artifactId)

        @mcp.tool(name="dependency.create", description=tools["dependency.create"].description)
        async def dependency_create(fromTaskId: str, toTaskId: str,
                                    artifacts: Optional[List[str]] = None) -> str:
            return await tools["dependency.create"].apply(**_drop_none(
                fromTaskId=fromTaskId, toTaskId=toTaskId, artifacts=artifacts,
            ))

        @mcp.tool(name="dependency.get", description=tools["dependency.get"].description)
        async def dependency_get(dependencyId: str) -> str:
            return await tools["dependency.get"].apply(dependencyId=dependencyId)

        @mcp.tool(name="dependency.update", description=tools["dependency.update"].description)
        async def dependency_update(dependencyId: str, fromTaskId: str, toTaskId: str,
                                    artifacts: Optional[List[str]] = None) -> str:
            return await tools["dependency.update"].apply(**_drop_none(
                dependencyId=dependencyId, fromTaskId=fromTaskId, toTaskId=toTaskId,
                artifacts=artifacts,
            ))

        @mcp.tool(name="dependency.delete", description=tools["dependency.delete"].description)
        async def dependency_delete(dependencyId: str) -> str:
            return await tools["dependency.delete"].apply(dependencyId=dependencyId)

        @mcp.tool(name="gantt.snapshot", description=tools["gantt.snapshot"].description)
        async def gantt_snapshot(parentId: Optional[str] = None, since: Optional[str] = None) -> str:
            return await tools["gantt.snapshot"].apply(**_drop_none(parentId=parentId, since=since))

        @mcp.tool(name="agent.getNextTask", description=tools["agent.getNextTask"].description)
        async def agent_get_next_task() -> str:
            return await tools["agent.getNextTask"].apply()

        @mcp.tool(name="agent.requestCompletion", description=tools["agent.requestCompletion"].description)
        async def agent_request_completion(taskId: str, audits: Optional[List[Dict[str, Any]]] = None) -> str:
            return await tools["agent.requestCompletion"].apply(**_drop_none(taskId=taskId, audits=audits))

        logger.info(f"FastMCP server '{self.server_name}' created with {len(tools)} registered tools")
        return mcp

    def get_server(self) -> FastMCP:
        if self.mcp_server is None:
            self.mcp_server = self._create_server()
        return self.mcp_server

    def start_server_sync(self, transport: str = "stdio", host: str = "127.0.0.1", port: int = 8000, **kwargs):
        """
        Start the server and block. FastMCP owns the event loop.

        Raises:
            ValueError: unsupported transport
        """
        transport = transport.lower()
        if transport not in SUPPORTED_TRANSPORTS:
            raise ValueError(f"Unsupported transport mode: {transport}. Supported: {', '.join(SUPPORTED_TRANSPORTS)}")

        server = self.get_server()
        logger.info(f"Starting FastMCP server with {transport} transport")
        if transport == "stdio":
            server.run()
        else:
            kwargs.setdefault("path", "/sse" if transport == "sse" else "/mcp")
            server.run(transport=transport, host=host, port=port, **kwargs)

    @asynccontextmanager
    async def lifecycle_manager(self):
        """Yield the configured FastMCP server, logging start and end."""
        server = self.get_server()
        logger.info(f"FastMCP server lifecycle started for '{self.server_name}'")
        try:
            yield server
        finally:
            logger.info(f"FastMCP server lifecycle ended for '{self.server_name}'")

    def get_server_info(self) -> Dict[str, Any]:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "instructions": self._server_instructions,
            "registered_tools": list(AVAILABLE_TOOLS),
            "server_created": self.mcp_server is not None,
        }


def create_mcp_server(
    database: WbsDatabase,
    server_name: str = DEFAULT_SERVER_NAME,
    server_version: str = SERVER_VERSION,
) -> WbsMCPServer:
    """Factory function to create a configured WbsMCPServer."""
    return WbsMCPServer(database=database, server_name=server_name, server_version=server_version)
