"""
JSON-RPC 2.0 Dispatcher

Routes decoded MCP-style requests to the WBS tools and turns the outcome into
a decoded response object. Messages without an id are notifications: they are
acknowledged by returning None, and no method runs for them.
"""

import json
import logging
from typing import Any, Dict, Optional

from .config import DEFAULT_SERVER_NAME, SERVER_VERSION
from .database import WbsDatabase
from .errors import WbsError
from .tools import AVAILABLE_TOOLS, BaseTool, create_tool_instance

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class Dispatcher:
    """Request router sitting between a framing transport and the tools."""

    def __init__(self, database: WbsDatabase, server_name: str = DEFAULT_SERVER_NAME,
                 server_version: str = SERVER_VERSION):
        self.database = database
        self.server_name = server_name
        self.server_version = server_version
        self._tools: Dict[str, BaseTool] = {
            name: create_tool_instance(name, database) for name in AVAILABLE_TOOLS
        }
        self._methods = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "ping": lambda params: {},
            "resources/list": lambda params: {"resources": []},
            "prompts/list": lambda params: {"prompts": []},
        }

    def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Decode one JSON text and dispatch it."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding undecodable message: {e}")
            return self._error(None, PARSE_ERROR, f"Parse error: {e.msg}")
        return self.handle(message)

    def handle(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Dispatch one decoded request.

        Returns:
            Response object, or None for notifications
        """
        if not isinstance(message, dict):
            return self._error(None, INVALID_REQUEST, "Invalid Request: message must be an object")

        request_id = message.get("id")
        is_notification = "id" not in message
        method = message.get("method")

        if message.get("jsonrpc") != "2.0" or not isinstance(method, str) or not method:
            if is_notification:
                logger.warning("Ignoring malformed notification")
                return None
            return self._error(request_id, INVALID_REQUEST, "Invalid Request")

        params = message.get("params") or {}
        if is_notification:
            logger.debug(f"Notification received: {method}")
            return None

        handler = self._methods.get(method)
        if handler is None:
            return self._error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        try:
            result = handler(params)
        except _ProtocolError as e:
            return self._error(request_id, e.code, e.message, e.data)
        except WbsError as e:
            logger.info(f"{method} rejected: {e.message}")
            return self._error(request_id, e.code, e.message, e.to_error_data())
        except Exception as e:
            logger.exception(f"Unexpected error handling {method}")
            return self._error(
                request_id, INTERNAL_ERROR, f"Internal error: {e}",
                {"kind": "internal", "retryable": False},
            )
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.input_schema(),
                }
                for tool in self._tools.values()
            ]
        }

    def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name") if isinstance(params, dict) else None
        if not name:
            raise _ProtocolError(INVALID_PARAMS, "Invalid params: tool name is required")
        tool = self._tools.get(name)
        if tool is None:
            raise _ProtocolError(METHOD_NOT_FOUND, f"Unknown tool: {name}")

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise _ProtocolError(INVALID_PARAMS, "Invalid params: arguments must be an object")

        logger.debug(f"Calling tool {name}")
        payload = tool.run(arguments)
        return {
            "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False)}],
            "structuredContent": payload,
        }

    @staticmethod
    def _error(request_id: Any, code: int, message: str,
               data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return {"jsonrpc": "2.0", "id": request_id, "error": error}


class _ProtocolError(Exception):
    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
