"""Tool allow-list enforcement."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from agentkit.spec.models import INTERNAL_TOOL_NAMES, AgentManifest
from agentkit.types import ToolCall


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    blocked_tools: tuple[str, ...] = ()
    reason: str | None = None


class PolicyGate:
    """Validates proposed tool calls against the active state's allow-list.

    The gate does not trust the model backend. Calls outside the allow-list
    are never executed, whatever the backend claims to enforce.
    """

    def __init__(self, manifest: AgentManifest) -> None:
        self._manifest = manifest

    def allowed_tools(self, state_id: str) -> frozenset[str]:
        state = self._manifest.get_state(state_id)
        if state is None:
            return frozenset()
        return frozenset((*self._manifest.fsm.global_allowed_tools, *state.allowed_tools, *INTERNAL_TOOL_NAMES))

    def validate(self, state_id: str, tool_calls: Sequence[ToolCall]) -> PolicyDecision:
        state = self._manifest.get_state(state_id)
        if state is None:
            return PolicyDecision(
                allowed=False,
                blocked_tools=tuple(call.name for call in tool_calls),
                reason=f"Unknown state: {state_id}",
            )

        allowed = self.allowed_tools(state_id)
        blocked = tuple(call.name for call in tool_calls if call.name not in allowed)
        if blocked:
            return PolicyDecision(
                allowed=False,
                blocked_tools=blocked,
                reason=f"Tools not allowed in state '{state.name}': {', '.join(blocked)}",
            )
        return PolicyDecision(allowed=True)

    def filter(self, state_id: str, tool_calls: Sequence[ToolCall]) -> tuple[list[ToolCall], list[ToolCall]]:
        allowed = self.allowed_tools(state_id)
        permitted: list[ToolCall] = []
        blocked: list[ToolCall] = []
        for call in tool_calls:
            (permitted if call.name in allowed else blocked).append(call)
        return permitted, blocked

    def generate_constraint_message(self, state_id: str, blocked_tools: Sequence[str]) -> str:
        state = self._manifest.get_state(state_id)
        state_name = state.name if state is not None else state_id
        allowed = sorted(self.allowed_tools(state_id))
        allowed_text = ", ".join(allowed) if allowed else "none"
        return (
            f'[POLICY GATE] The following tools are not allowed in the current state "{state_name}": '
            f"{', '.join(blocked_tools)}. "
            f"Allowed tools: {allowed_text}. "
            "Please try again using only allowed tools."
        )
