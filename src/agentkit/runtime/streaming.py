"""Assembly of streamed model output into complete responses.

Streaming backends emit partial events: text deltas, tool-call fragments
keyed by index (id and name arrive first, argument JSON arrives in pieces),
usage and a finish reason. ``StreamAccumulator`` folds them into one
``ChatResponse`` so the loop only ever sees complete tool calls.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

from agentkit.errors import BackendError
from agentkit.types import AssistantMessage, ChatResponse, FinishReason, ToolCall, Usage

FINISH_REASONS: frozenset[str] = frozenset({"stop", "tool_calls", "length", "content_filter"})


@dataclass(frozen=True)
class StreamEvent:
    """One partial response event."""

    kind: Literal["text", "tool_call", "usage", "finish", "error"]
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class StreamAccumulator:
    """Collects stream events; ``result()`` returns the assembled response."""

    def __init__(self) -> None:
        self._text: list[str] = []
        self._calls: dict[int, _PendingToolCall] = {}
        self._usage: Usage | None = None
        self._finish_reason: str | None = None
        self._error: str | None = None

    def feed(self, event: StreamEvent) -> None:
        match event.kind:
            case "text":
                delta = event.data.get("delta")
                if isinstance(delta, str):
                    self._text.append(delta)
            case "tool_call":
                self._feed_tool_call(event.data)
            case "usage":
                self._usage = Usage(
                    prompt_tokens=int(event.data.get("prompt_tokens") or 0),
                    completion_tokens=int(event.data.get("completion_tokens") or 0),
                    total_tokens=int(event.data.get("total_tokens") or 0),
                )
            case "finish":
                reason = event.data.get("reason")
                if isinstance(reason, str):
                    self._finish_reason = reason
            case "error":
                self._error = str(event.data.get("message") or "stream error")

    def _feed_tool_call(self, data: dict[str, Any]) -> None:
        index = int(data.get("index", len(self._calls)))
        pending = self._calls.setdefault(index, _PendingToolCall())
        if call_id := data.get("id"):
            pending.id = str(call_id)
        if name := data.get("name"):
            pending.name += str(name)
        if arguments := data.get("arguments"):
            pending.arguments += str(arguments)

    def result(self) -> ChatResponse:
        if self._error is not None:
            raise BackendError(self._error)

        tool_calls = tuple(self._complete_call(index, self._calls[index]) for index in sorted(self._calls))
        finish_reason = self._finish_reason
        if finish_reason not in FINISH_REASONS:
            finish_reason = "tool_calls" if tool_calls else "stop"
        return ChatResponse(
            message=AssistantMessage(content="".join(self._text), tool_calls=tool_calls),
            usage=self._usage,
            finish_reason=_as_finish_reason(finish_reason),
        )

    @staticmethod
    def _complete_call(index: int, pending: _PendingToolCall) -> ToolCall:
        if not pending.name:
            raise BackendError(f"stream ended with an unnamed tool call at index {index}")
        raw = pending.arguments.strip() or "{}"
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise BackendError(f"tool call '{pending.name}' has malformed arguments: {exc.msg}") from exc
        if not isinstance(arguments, dict):
            logger.warning("stream.tool_call.non_object name={} arguments={!r}", pending.name, raw)
            arguments = {"value": arguments}
        return ToolCall(id=pending.id or f"call_{index}", name=pending.name, arguments=arguments)


async def collect_stream(events: AsyncIterable[StreamEvent]) -> ChatResponse:
    """Drain a stream of partial events into one response."""
    accumulator = StreamAccumulator()
    async for event in events:
        accumulator.feed(event)
    return accumulator.result()


def _as_finish_reason(value: str) -> FinishReason:
    match value:
        case "tool_calls":
            return "tool_calls"
        case "length":
            return "length"
        case "content_filter":
            return "content_filter"
        case _:
            return "stop"
