from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from agentkit.executors import HttpToolExecutor, RoutingToolExecutor
from agentkit.spec.models import HttpTool, InternalTool, McpTool
from agentkit.types import ToolResult


def _tool(**overrides: Any) -> HttpTool:
    data: dict[str, Any] = {
        "name": "symptoms.analyze",
        "description": "Analyze symptoms",
        "endpoint": "https://clinic.example/analyze",
        "method": "POST",
        "headers": {"X-Api-Key": "secret"},
        "retry_count": 2,
        "timeout_ms": 1000,
    }
    data.update(overrides)
    return HttpTool.model_validate(data)


def _executor(handler) -> HttpToolExecutor:
    return HttpToolExecutor(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_post_sends_json_body_and_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"severity": "low"})

    result = await _executor(handler).execute(_tool(), {"text": "headache"})

    assert result == ToolResult.ok({"severity": "low"})
    assert seen[0].method == "POST"
    assert json.loads(seen[0].content) == {"text": "headache"}
    assert seen[0].headers["X-Api-Key"] == "secret"


@pytest.mark.asyncio
async def test_get_sends_query_parameters() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="no invoices")

    result = await _executor(handler).execute(
        _tool(method="GET", endpoint="https://clinic.example/billing"), {"patient_id": "p1", "open": True}
    )

    assert result == ToolResult.ok("no invoices")
    assert seen[0].url.params["patient_id"] == "p1"
    assert seen[0].url.params["open"] == "true"


@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    statuses = [503, 502, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        return httpx.Response(status, json={"ok": status == 200})

    result = await _executor(handler).execute(_tool(), {})

    assert result == ToolResult.ok({"ok": True})
    assert statuses == []


@pytest.mark.asyncio
async def test_last_server_error_is_returned_as_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"detail": "down"})

    result = await _executor(handler).execute(_tool(retry_count=0), {})

    assert result.success is False
    assert result.error == "HTTP 500"
    assert result.output == {"detail": "down"}


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, text="not found")

    result = await _executor(handler).execute(_tool(), {})

    assert calls == 1
    assert result == ToolResult.fail("HTTP 404", output="not found")


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    result = await _executor(handler).execute(_tool(retry_count=1), {})

    assert calls == 2
    assert result.success is False
    assert result.error is not None
    assert "failed after 2 attempts" in result.error
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_routing_dispatches_by_tool_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"via": "http"})

    async def lab_server(tool: McpTool, arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.ok({"via": tool.server, "tool": tool.tool_name, "args": arguments})

    router = RoutingToolExecutor(http=_executor(handler), mcp={"lab": lab_server})
    mcp_tool = McpTool(name="lab.order", description="Order a lab test", server="lab", tool_name="order")
    orphan = McpTool(name="pharmacy.fill", description="Fill a prescription", server="pharmacy", tool_name="fill")

    assert await router.execute(_tool(), {}) == ToolResult.ok({"via": "http"})
    assert await router.execute(mcp_tool, {"code": "cbc"}) == ToolResult.ok(
        {"via": "lab", "tool": "order", "args": {"code": "cbc"}}
    )
    assert await router.execute(orphan, {}) == ToolResult.fail("mcp server 'pharmacy' is not configured")
    internal = InternalTool(name="kb.search", description="search")
    assert (await router.execute(internal, {})).success is False


@pytest.mark.asyncio
async def test_registered_mcp_server_is_used() -> None:
    router = RoutingToolExecutor(http=_executor(lambda request: httpx.Response(200)))

    async def pharmacy(tool: McpTool, arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.ok("filled")

    router.register_mcp_server("pharmacy", pharmacy)
    tool = McpTool(name="pharmacy.fill", description="Fill a prescription", server="pharmacy", tool_name="fill")

    assert await router.execute(tool, {}) == ToolResult.ok("filled")
