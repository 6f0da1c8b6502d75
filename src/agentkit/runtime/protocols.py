"""Collaborator contracts consumed by the runtime."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from agentkit.spec.models import HttpTool, InternalTool, McpTool
from agentkit.types import ChatRequest, ChatResponse, Run, SessionState, ToolResult


@runtime_checkable
class ModelBackend(Protocol):
    """Language-model backend.

    ``supports_tool_choice`` tells the runtime whether the backend enforces the
    requested tool choice; when it does not, the policy gate is the only
    enforcement point.
    """

    supports_tool_choice: bool

    async def chat(self, request: ChatRequest) -> ChatResponse: ...


@runtime_checkable
class ToolExecutor(Protocol):
    """Runs registry tools. Ordinary tool failures are returned as ``success=False``."""

    async def execute(self, tool: HttpTool | McpTool | InternalTool, arguments: dict[str, Any]) -> ToolResult: ...


@runtime_checkable
class MemoryStore(Protocol):
    async def get_session_state(self, session_id: str) -> SessionState | None: ...

    async def set_session_state(self, session_id: str, state: SessionState) -> None: ...

    async def get_long_term_memory(self, namespace: str, key: str) -> Any: ...

    async def set_long_term_memory(self, namespace: str, key: str, value: Any, ttl: float | None = None) -> None: ...


@runtime_checkable
class RunSink(Protocol):
    async def append(self, run: Run) -> None: ...
