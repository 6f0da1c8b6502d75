"""Message, tool-call and run record types shared by the engine and its collaborators."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from agentkit.spec.models import ToolDefinition

RunStatus = Literal["running", "completed", "failed", "cancelled"]
FinishReason = Literal["stop", "tool_calls", "length", "content_filter"]
ToolChoice = Literal["auto", "none", "required"]


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class ToolCall(BaseModel):
    """One complete tool invocation proposed by the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, output: Any) -> ToolResult:
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, output: Any = None) -> ToolResult:
        return cls(success=False, output=output, error=error)


class NamedToolResult(BaseModel):
    """Tool result paired with the tool that produced it."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    call_id: str
    result: ToolResult


class SystemMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    content: str
    synthetic: bool = False


class AssistantMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] = "assistant"
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()


class ToolMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    name: str | None = None


ChatMessage = Annotated[SystemMessage | UserMessage | AssistantMessage | ToolMessage, Field(discriminator="role")]


class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def cost(self, prompt_rate: float, completion_rate: float) -> float:
        return self.prompt_tokens * prompt_rate + self.completion_tokens * completion_rate


class ChatRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    messages: tuple[ChatMessage, ...]
    tools: tuple[ToolDefinition, ...] = ()
    tool_choice: ToolChoice | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: AssistantMessage
    usage: Usage | None = None
    finish_reason: FinishReason = "stop"


class SessionState(BaseModel):
    """Mutable per-session conversation state, persisted by the memory store."""

    current_state: str
    history: list[ChatMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    state_entered_at: datetime = Field(default_factory=utcnow)


class StepTokens(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: int = 0
    completion: int = 0
    total: int = 0


class RunStep(BaseModel):
    """Record of one loop iteration. Never revised once appended."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    run_id: str
    step_number: int
    state: str
    input: str | None = None
    output: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()
    blocked_tools: tuple[str, ...] = ()
    tokens: StepTokens = Field(default_factory=StepTokens)
    cost_estimate: float = 0.0
    latency_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class Run(BaseModel):
    id: str = Field(default_factory=new_id)
    agent_id: str
    agent_version: str
    session_id: str
    user_id: str | None = None
    status: RunStatus = "running"
    steps: list[RunStep] = Field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0
    total_latency_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    def append_step(self, step: RunStep) -> None:
        self.steps.append(step)

    def finish(self, status: RunStatus, *, completed_at: datetime | None = None, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.completed_at = completed_at or utcnow()
