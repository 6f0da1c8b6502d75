"""Offline backend that echoes the latest user message."""

from __future__ import annotations

from agentkit.types import AssistantMessage, ChatRequest, ChatResponse, Usage, UserMessage


class EchoBackend:
    """Deterministic backend for dry runs; never proposes tool calls."""

    supports_tool_choice = False

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self.calls = 0

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.calls += 1
        text = ""
        for message in reversed(request.messages):
            if isinstance(message, UserMessage) and not message.synthetic:
                text = message.content
                break
        prompt_tokens = sum(len(getattr(message, "content", "").split()) for message in request.messages)
        completion_tokens = len(text.split())
        return ChatResponse(
            message=AssistantMessage(content=f"{self.prefix}{text}"),
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
        )
