"""Executor for ``http`` tool definitions."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from agentkit.spec.models import HttpTool
from agentkit.types import ToolResult

RETRYABLE_STATUS_FLOOR = 500


class HttpToolExecutor:
    """Calls HTTP endpoints described by the tool registry.

    GET and DELETE requests carry the arguments as query parameters, every
    other method sends them as a JSON body. Transport errors and 5xx answers
    are retried up to ``retry_count`` times; anything else is returned to
    the model as a failed result.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def execute(self, tool: HttpTool, arguments: dict[str, Any]) -> ToolResult:
        if self._client is not None:
            return await self._execute(self._client, tool, arguments)
        async with httpx.AsyncClient() as client:
            return await self._execute(client, tool, arguments)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _execute(self, client: httpx.AsyncClient, tool: HttpTool, arguments: dict[str, Any]) -> ToolResult:
        request: dict[str, Any] = {
            "headers": dict(tool.headers or {}),
            "timeout": tool.timeout_ms / 1000,
        }
        if tool.method in ("GET", "DELETE"):
            request["params"] = {key: _query_value(value) for key, value in arguments.items()}
        else:
            request["json"] = arguments

        attempts = tool.retry_count + 1
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                response = await client.request(tool.method, tool.endpoint, **request)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc!s}"
                logger.warning("tool.http.retry name={} attempt={}/{} error={}", tool.name, attempt, attempts, last_error)
                continue

            if response.status_code >= RETRYABLE_STATUS_FLOOR and attempt < attempts:
                logger.warning(
                    "tool.http.retry name={} attempt={}/{} status={}", tool.name, attempt, attempts, response.status_code
                )
                continue
            return _to_result(response)

        return ToolResult.fail(f"HTTP tool '{tool.name}' failed after {attempts} attempts: {last_error}")


def _to_result(response: httpx.Response) -> ToolResult:
    try:
        output: Any = response.json()
    except ValueError:
        output = response.text
    if response.is_success:
        return ToolResult.ok(output)
    return ToolResult.fail(f"HTTP {response.status_code}", output=output)


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value
