"""Runtime limits and pricing consumed by the execution loop."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CostTable:
    """Price per token, in the caller's currency."""

    prompt: float = 0.00001
    completion: float = 0.00003


@dataclass(frozen=True)
class RuntimeOptions:
    max_iterations_per_state: int = 10
    max_total_iterations: int = 50
    enable_policy_gate: bool = True
    cost_per_token: CostTable = field(default_factory=CostTable)
    history_window: int = 20
    max_tool_description_length: int = 500
    model_timeout_seconds: float | None = 90
    tool_timeout_seconds: float | None = 30
    temperature: float | None = None
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.max_iterations_per_state < 1:
            raise ValueError("max_iterations_per_state must be >= 1")
        if self.max_total_iterations < 1:
            raise ValueError("max_total_iterations must be >= 1")
        if self.history_window < 1:
            raise ValueError("history_window must be >= 1")
