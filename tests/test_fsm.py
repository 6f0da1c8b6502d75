from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from agentkit.errors import UnknownStateError
from agentkit.fsm import StateMachine
from agentkit.spec import AgentManifest, parse_manifest
from agentkit.triggers import (
    TransitionContext,
    matches_condition,
    matches_intent,
    matches_timeout,
    matches_tool_result,
    parse_condition,
)
from agentkit.types import NamedToolResult, ToolResult

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _context(**kwargs: Any) -> TransitionContext:
    kwargs.setdefault("state_entered_at", T0)
    kwargs.setdefault("now", T0)
    return TransitionContext(**kwargs)


def _routing_manifest(manifest_data: dict[str, Any], transitions: list[dict[str, Any]]) -> AgentManifest:
    manifest_data["fsm"] = {
        "initial_state": "start",
        "states": [
            {"id": "start", "name": "Start", "transitions": transitions},
            {"id": "first", "name": "First"},
            {"id": "second", "name": "Second"},
        ],
        "fallback_state": "second",
    }
    return parse_manifest(manifest_data)


def test_starts_at_initial_state(manifest: AgentManifest) -> None:
    machine = StateMachine(manifest)

    assert machine.current_state_id == "welcome"
    assert machine.current_state.name == "Welcome"
    assert not machine.is_terminal()


def test_unknown_initial_state_raises(manifest: AgentManifest) -> None:
    with pytest.raises(UnknownStateError):
        StateMachine(manifest, "nowhere")


def test_intent_transition_moves_pointer(manifest: AgentManifest) -> None:
    clock = FakeClock()
    machine = StateMachine(manifest, clock=clock)
    clock.now = T0 + timedelta(seconds=5)

    outcome = machine.evaluate_transitions(_context(last_user_message="I have a HEADACHE today"))

    assert outcome.transitioned
    assert (outcome.from_state, outcome.to_state) == ("welcome", "triage")
    assert outcome.trigger is not None and outcome.trigger.when.type == "intent"
    assert machine.current_state_id == "triage"
    assert machine.state_entered_at == T0 + timedelta(seconds=5)
    assert machine.is_terminal()


def test_no_match_keeps_state(manifest: AgentManifest) -> None:
    machine = StateMachine(manifest)

    outcome = machine.evaluate_transitions(_context(last_user_message="hello there"))

    assert not outcome.transitioned
    assert outcome.to_state == "welcome"
    assert machine.current_state_id == "welcome"


def test_highest_priority_wins(manifest_data: dict[str, Any]) -> None:
    manifest = _routing_manifest(
        manifest_data,
        [
            {"when": {"type": "intent", "value": "help"}, "to_state": "first", "priority": 1},
            {"when": {"type": "intent", "value": "help"}, "to_state": "second", "priority": 5},
        ],
    )

    outcome = StateMachine(manifest).evaluate_transitions(_context(last_user_message="help me"))

    assert outcome.to_state == "second"


def test_equal_priority_uses_declaration_order(manifest_data: dict[str, Any]) -> None:
    manifest = _routing_manifest(
        manifest_data,
        [
            {"when": {"type": "intent", "value": "help"}, "to_state": "first", "priority": 3},
            {"when": {"type": "intent", "value": "help"}, "to_state": "second", "priority": 3},
        ],
    )

    outcome = StateMachine(manifest).evaluate_transitions(_context(last_user_message="help me"))

    assert outcome.to_state == "first"


def test_zero_ms_timeout_fires_on_next_evaluation(manifest_data: dict[str, Any]) -> None:
    manifest = _routing_manifest(manifest_data, [{"when": {"type": "timeout", "value": "0"}, "to_state": "first"}])
    machine = StateMachine(manifest, clock=FakeClock())

    outcome = machine.evaluate_transitions(_context(last_user_message="anything at all"))

    assert outcome.transitioned
    assert machine.current_state_id == "first"


def test_transition_to_and_fallback(manifest_data: dict[str, Any]) -> None:
    manifest = _routing_manifest(manifest_data, [])
    machine = StateMachine(manifest)

    machine.transition_to("first")
    assert machine.current_state_id == "first"
    assert machine.go_to_fallback()
    assert machine.current_state_id == "second"
    with pytest.raises(UnknownStateError):
        machine.transition_to("ghost")


def test_go_to_fallback_without_fallback(manifest: AgentManifest) -> None:
    machine = StateMachine(manifest)

    assert not machine.go_to_fallback()
    assert machine.current_state_id == "welcome"


def test_intent_matching() -> None:
    assert matches_intent("headache|pain", _context(last_user_message="Back PAIN again"))
    assert matches_intent(" refund | money back ", _context(last_user_message="I want my money back"))
    assert not matches_intent("headache||", _context(last_user_message="all good"))
    assert not matches_intent("|", _context(last_user_message="anything"))
    assert not matches_intent("pain", _context(last_user_message=None))


@pytest.mark.parametrize(
    ("condition", "expected"),
    [
        ("metadata.score > 5", True),
        ("metadata.score <= 5", False),
        ("metadata.profile.tier == gold", True),
        ("tier == gold", True),
        ("metadata.profile.tier != gold", False),
        ("metadata.tags contains vip", True),
        ("metadata.verified == true", True),
        ("iteration >= 2", True),
        ("tool_calls_count == 0", True),
        ("metadata.missing == ", False),
        ("metadata.profile.tier > 3", False),
        ("metadata.missing > 3", False),
        ("score >", False),
        ("just words", False),
    ],
)
def test_condition_matching(condition: str, expected: bool) -> None:
    context = _context(
        metadata={"score": 7, "tier": "gold", "profile": {"tier": "gold"}, "tags": ["vip", "new"], "verified": True},
        iteration=2,
    )

    assert matches_condition(condition, context) is expected


def test_parse_condition() -> None:
    condition = parse_condition("metadata.score >= 10")

    assert condition is not None
    assert (condition.variable, condition.operator, condition.value) == ("metadata.score", ">=", "10")
    assert parse_condition("score 10") is None


def test_tool_result_matching() -> None:
    context = _context(
        last_tool_results=(
            NamedToolResult(tool_name="symptoms.analyze", call_id="c1", result=ToolResult.ok({"severity": "low"})),
            NamedToolResult(tool_name="billing.lookup", call_id="c2", result=ToolResult.fail("HTTP 500")),
        )
    )

    assert matches_tool_result("symptoms.analyze:success", context)
    assert matches_tool_result("symptoms.analyze:low", context)
    assert not matches_tool_result("symptoms.analyze:high", context)
    assert matches_tool_result("billing.lookup:error", context)
    assert not matches_tool_result("billing.lookup:success", context)
    assert not matches_tool_result("other.tool:success", context)
    assert not matches_tool_result("symptoms.analyze", context)


def test_tool_result_outcome_may_contain_colons() -> None:
    context = _context(
        last_tool_results=(
            NamedToolResult(tool_name="clock.now", call_id="c1", result=ToolResult.ok({"time": "12:30"})),
        )
    )

    assert matches_tool_result("clock.now:12:30", context)


def test_timeout_matching() -> None:
    later = _context(now=T0 + timedelta(milliseconds=10))

    assert matches_timeout("0", later)
    assert matches_timeout("10", later)
    assert not matches_timeout("1000", later)
    assert not matches_timeout("soon", later)
