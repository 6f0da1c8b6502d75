"""OpenAI-compatible streaming chat backend."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

import openai
from loguru import logger
from openai import AsyncOpenAI

from agentkit.errors import BackendError
from agentkit.runtime.streaming import StreamAccumulator, StreamEvent
from agentkit.spec.models import ToolParameter
from agentkit.types import (
    AssistantMessage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    SystemMessage,
    ToolCall,
    ToolMessage,
    UserMessage,
)


def to_model_name(name: str) -> str:
    return name.replace(".", "_")


class OpenAIBackend:
    """Chat-completions backend speaking the OpenAI wire format.

    Responses are streamed and folded by ``StreamAccumulator``. Tool names
    are sent with dots replaced by underscores and mapped back on return.
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        supports_tool_choice: bool = True,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.supports_tool_choice = supports_tool_choice
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=api_base)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        names = _tool_name_map(request)
        params: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(request.messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.tools:
            params["tools"] = [_tool_schema(tool, to_model_name(tool.name)) for tool in request.tools]
            if request.tool_choice is not None:
                params["tool_choice"] = request.tool_choice
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.max_tokens is not None:
            params["max_tokens"] = request.max_tokens

        logger.debug("model.request model={} messages={} tools={}", self.model, len(request.messages), len(names))
        accumulator = StreamAccumulator()
        try:
            async for event in self._events(params):
                accumulator.feed(event)
        except openai.OpenAIError as exc:
            raise BackendError(f"model_call_error: {exc!s}") from exc

        response = accumulator.result()
        if not response.message.tool_calls:
            return response
        calls = tuple(
            ToolCall(id=call.id, name=names.get(call.name, call.name), arguments=call.arguments)
            for call in response.message.tool_calls
        )
        message = AssistantMessage(content=response.message.content, tool_calls=calls)
        return response.model_copy(update={"message": message})

    async def _events(self, params: dict[str, Any]) -> AsyncIterator[StreamEvent]:
        stream = await self._client.chat.completions.create(**params)
        async for chunk in stream:
            if chunk.usage is not None:
                yield StreamEvent(
                    "usage",
                    {
                        "prompt_tokens": chunk.usage.prompt_tokens,
                        "completion_tokens": chunk.usage.completion_tokens,
                        "total_tokens": chunk.usage.total_tokens,
                    },
                )
            for choice in chunk.choices:
                delta = choice.delta
                if delta is not None and delta.content:
                    yield StreamEvent("text", {"delta": delta.content})
                for fragment in (delta.tool_calls if delta is not None else None) or []:
                    function = fragment.function
                    yield StreamEvent(
                        "tool_call",
                        {
                            "index": fragment.index,
                            "id": fragment.id,
                            "name": function.name if function is not None else None,
                            "arguments": function.arguments if function is not None else None,
                        },
                    )
                if choice.finish_reason:
                    yield StreamEvent("finish", {"reason": choice.finish_reason})


def to_openai_messages(messages: tuple[ChatMessage, ...] | list[ChatMessage]) -> list[dict[str, Any]]:
    """Map engine messages to OpenAI chat messages.

    An assistant turn whose tool calls never all received results (a call
    rejected by the policy gate) is sent as plain text, since the wire
    format requires every tool call to be answered. Tool results of such a
    turn, or whose turn fell out of the window, are sent as text too.
    """
    answered = {message.tool_call_id for message in messages if isinstance(message, ToolMessage)}
    open_calls: set[str] = set()
    payload: list[dict[str, Any]] = []
    for message in messages:
        match message:
            case SystemMessage() | UserMessage():
                open_calls = set()
                payload.append({"role": message.role, "content": message.content})
            case AssistantMessage(tool_calls=calls) if calls and all(call.id in answered for call in calls):
                open_calls = {call.id for call in calls}
                payload.append({
                    "role": "assistant",
                    "content": message.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": to_model_name(call.name), "arguments": _dump_arguments(call)},
                        }
                        for call in calls
                    ],
                })
            case AssistantMessage(tool_calls=calls) if calls:
                open_calls = set()
                proposed = ", ".join(call.name for call in calls)
                text = f"{message.content}\n" if message.content else ""
                payload.append({"role": "assistant", "content": f"{text}[proposed tool calls: {proposed}]"})
            case AssistantMessage():
                open_calls = set()
                payload.append({"role": "assistant", "content": message.content})
            case ToolMessage() if message.tool_call_id in open_calls:
                payload.append({"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content})
            case ToolMessage():
                label = message.name or message.tool_call_id
                payload.append({"role": "user", "content": f"[tool result {label}] {message.content}"})
    return payload


def parameter_schema(parameter: ToolParameter) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": parameter.type}
    if parameter.description:
        schema["description"] = parameter.description
    if parameter.enum:
        schema["enum"] = list(parameter.enum)
    if parameter.items is not None:
        schema["items"] = parameter_schema(parameter.items)
    if parameter.properties:
        schema.update(_object_schema(parameter.properties))
    return schema


def _object_schema(properties: Mapping[str, ToolParameter]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {name: parameter_schema(param) for name, param in sorted(properties.items())},
        "required": sorted(name for name, param in properties.items() if param.required),
    }


def _tool_schema(tool: Any, model_name: str) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": model_name,
            "description": tool.description,
            "parameters": _object_schema(tool.parameters),
        },
    }


def _tool_name_map(request: ChatRequest) -> dict[str, str]:
    names: dict[str, str] = {}
    for tool in request.tools:
        model_name = to_model_name(tool.name)
        if model_name in names and names[model_name] != tool.name:
            raise BackendError(f"Duplicate model tool name after conversion: {model_name}")
        names[model_name] = tool.name
    return names


def _dump_arguments(call: ToolCall) -> str:
    return json.dumps(call.arguments, ensure_ascii=False)
