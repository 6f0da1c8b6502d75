"""Transition trigger matching.

Triggers use a small rule language:

- ``intent``: ``|``-separated keywords, case-insensitive substring match
  against the latest user message.
- ``condition``: ``<variable> <op> <value>`` with ``op`` one of ``==``,
  ``!=``, ``>``, ``<``, ``>=``, ``<=``, ``contains``. Variables resolve from
  ``metadata.<path>``, ``iteration`` and ``tool_calls_count``; any other bare
  name is looked up in metadata.
- ``tool_result``: ``<tool>:<outcome>`` where outcome is ``success``,
  ``error`` or a substring of the JSON-serialized tool output.
- ``timeout``: milliseconds elapsed since the state was entered.

Malformed rules never raise; they simply do not match.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from agentkit.types import NamedToolResult

CONDITION_RE = re.compile(r"^\s*(?P<variable>\S+)\s+(?P<op>==|!=|>=|<=|>|<|contains)\s+(?P<value>.*?)\s*$")
NUMERIC_OPERATORS = frozenset({">", "<", ">=", "<="})
_MISSING = object()


@dataclass(frozen=True)
class Condition:
    variable: str
    operator: str
    value: str


@dataclass(frozen=True)
class TransitionContext:
    """Facts a transition may be evaluated against."""

    state_entered_at: datetime
    now: datetime
    last_user_message: str | None = None
    last_assistant_message: str | None = None
    last_tool_results: Sequence[NamedToolResult] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    iteration: int = 0
    tool_calls_count: int = 0


def parse_condition(raw: str) -> Condition | None:
    match = CONDITION_RE.match(raw)
    if match is None:
        return None
    value = match.group("value")
    if not value:
        return None
    return Condition(variable=match.group("variable"), operator=match.group("op"), value=value)


def matches_intent(value: str, context: TransitionContext) -> bool:
    message = (context.last_user_message or "").casefold()
    if not message:
        return False
    keywords = [keyword.strip().casefold() for keyword in value.split("|")]
    return any(keyword and keyword in message for keyword in keywords)


def matches_condition(value: str, context: TransitionContext) -> bool:
    condition = parse_condition(value)
    if condition is None:
        logger.debug("fsm.condition.malformed condition={!r}", value)
        return False

    actual = resolve_variable(condition.variable, context)
    if actual is _MISSING:
        actual = None

    if condition.operator in NUMERIC_OPERATORS:
        left = _to_number(actual)
        right = _to_number(condition.value)
        if left is None or right is None:
            logger.debug("fsm.condition.not_numeric condition={!r} actual={!r}", value, actual)
            return False
        match condition.operator:
            case ">":
                return left > right
            case "<":
                return left < right
            case ">=":
                return left >= right
            case _:
                return left <= right

    rendered = _render(actual)
    match condition.operator:
        case "==":
            return rendered == condition.value
        case "!=":
            return rendered != condition.value
        case _:
            return condition.value in rendered


def matches_tool_result(value: str, context: TransitionContext) -> bool:
    tool_name, separator, outcome = value.partition(":")
    if not separator or not tool_name or not outcome:
        return False

    for named in context.last_tool_results:
        if named.tool_name != tool_name:
            continue
        if outcome == "success":
            return named.result.success
        if outcome == "error":
            return not named.result.success
        return outcome in json.dumps(named.result.output, ensure_ascii=False, default=str)
    return False


def matches_timeout(value: str, context: TransitionContext) -> bool:
    try:
        threshold_ms = int(value.strip())
    except ValueError:
        return False
    elapsed_ms = (context.now - context.state_entered_at).total_seconds() * 1000
    return elapsed_ms >= threshold_ms


def resolve_variable(variable: str, context: TransitionContext) -> Any:
    head, _, rest = variable.partition(".")
    if head == "iteration" and not rest:
        return context.iteration
    if head == "tool_calls_count" and not rest:
        return context.tool_calls_count
    if head == "metadata" and rest:
        return _lookup(context.metadata, rest)
    return _lookup(context.metadata, variable)


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    if path in data:
        return data[path]
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


TRIGGER_MATCHERS = {
    "intent": matches_intent,
    "condition": matches_condition,
    "tool_result": matches_tool_result,
    "timeout": matches_timeout,
}
