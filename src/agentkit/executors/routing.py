"""Dispatch of registry tools to per-type executors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from agentkit.executors.http import HttpToolExecutor
from agentkit.spec.models import HttpTool, InternalTool, McpTool
from agentkit.types import ToolResult

McpHandler = Callable[[McpTool, dict[str, Any]], Awaitable[ToolResult]]


class RoutingToolExecutor:
    """Routes ``http`` tools to an HTTP executor and ``mcp`` tools to per-server handlers."""

    def __init__(self, http: HttpToolExecutor | None = None, mcp: dict[str, McpHandler] | None = None) -> None:
        self._http = http or HttpToolExecutor()
        self._mcp: dict[str, McpHandler] = dict(mcp or {})

    def register_mcp_server(self, server: str, handler: McpHandler) -> None:
        self._mcp[server] = handler

    async def execute(self, tool: HttpTool | McpTool | InternalTool, arguments: dict[str, Any]) -> ToolResult:
        match tool:
            case HttpTool():
                return await self._http.execute(tool, arguments)
            case McpTool():
                handler = self._mcp.get(tool.server)
                if handler is None:
                    return ToolResult.fail(f"mcp server '{tool.server}' is not configured")
                return await handler(tool, arguments)
            case _:
                return ToolResult.fail(f"internal tool '{tool.name}' must be handled by the runtime")
