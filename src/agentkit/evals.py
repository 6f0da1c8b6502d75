"""Golden-test replay against a live runtime."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

from agentkit.errors import AgentKitError
from agentkit.runtime.engine import AgentResponse, AgentRuntime
from agentkit.spec.models import AgentManifest, EvalAssert, GoldenTest
from agentkit.types import new_id

AssertOutcome = Literal["passed", "failed", "skipped"]


@dataclass(frozen=True)
class AssertResult:
    assertion: EvalAssert
    outcome: AssertOutcome
    detail: str = ""


@dataclass(frozen=True)
class GoldenTestResult:
    test_id: str
    name: str
    passed: bool
    asserts: tuple[AssertResult, ...] = ()
    final_message: str = ""
    final_state: str | None = None
    error: str | None = None


@dataclass
class EvalReport:
    agent_id: str
    results: list[GoldenTestResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def pass_rate(self) -> float:
        if not self.results:
            return 100.0
        return self.passed * 100 / self.total

    def meets_threshold(self, threshold: float) -> bool:
        return self.pass_rate >= threshold


@dataclass(frozen=True)
class _Transcript:
    final_message: str
    final_state: str
    tools_called: frozenset[str]


async def run_golden_tests(
    manifest: AgentManifest,
    runtime_factory: Callable[[], AgentRuntime],
    *,
    tags: frozenset[str] | None = None,
) -> EvalReport:
    """Replay every golden test of ``manifest`` through a fresh runtime and session."""
    report = EvalReport(agent_id=manifest.metadata.id)
    for test in manifest.evals.golden_tests:
        if tags and not tags.intersection(test.tags):
            continue
        result = await run_golden_test(test, runtime_factory())
        logger.info("eval.test id={} passed={}", test.id, result.passed)
        report.results.append(result)
    return report


async def run_golden_test(test: GoldenTest, runtime: AgentRuntime) -> GoldenTestResult:
    session_id = f"eval-{test.id}-{new_id()[:8]}"
    responses: list[AgentResponse] = []
    try:
        async with asyncio.timeout(test.timeout_ms / 1000):
            for message in test.conversation:
                if message.role != "user":
                    continue
                responses.append(await runtime.process_message(session_id, message.content))
    except (AgentKitError, TimeoutError) as exc:
        error = str(exc) or type(exc).__name__
        return GoldenTestResult(test_id=test.id, name=test.name, passed=False, error=error)

    if not responses:
        return GoldenTestResult(test_id=test.id, name=test.name, passed=False, error="conversation has no user turn")

    transcript = _Transcript(
        final_message=responses[-1].message,
        final_state=responses[-1].state,
        tools_called=frozenset(
            call.name
            for response in responses
            for step in response.run.steps
            for call in step.tool_calls
            if call.name not in step.blocked_tools
        ),
    )
    results = tuple(check_assert(assertion, transcript) for assertion in test.asserts)
    return GoldenTestResult(
        test_id=test.id,
        name=test.name,
        passed=all(result.outcome != "failed" for result in results),
        asserts=results,
        final_message=transcript.final_message,
        final_state=transcript.final_state,
    )


def check_assert(assertion: EvalAssert, transcript: _Transcript) -> AssertResult:
    text = transcript.final_message
    match assertion.type:
        case "contains":
            ok = assertion.value in text
        case "not_contains":
            ok = assertion.value not in text
        case "matches_regex":
            try:
                ok = re.search(assertion.value, text) is not None
            except re.error as exc:
                return AssertResult(assertion, "failed", f"invalid regex: {exc}")
        case "json_path":
            return _check_json_path(assertion, text)
        case "tool_called":
            ok = assertion.value in transcript.tools_called
        case "tool_not_called":
            ok = assertion.value not in transcript.tools_called
        case "state_is":
            ok = transcript.final_state == assertion.value
        case _:
            return AssertResult(assertion, "skipped", "custom asserts are not evaluated")
    if ok:
        return AssertResult(assertion, "passed")
    return AssertResult(assertion, "failed", assertion.message or f"{assertion.type} {assertion.value!r} did not hold")


def _check_json_path(assertion: EvalAssert, text: str) -> AssertResult:
    if not assertion.path:
        return AssertResult(assertion, "failed", "json_path assert needs a path")
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        return AssertResult(assertion, "failed", "final answer is not JSON")

    current: Any = document
    for part in assertion.path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return AssertResult(assertion, "failed", f"path {assertion.path!r} not found")

    rendered = current if isinstance(current, str) else json.dumps(current, ensure_ascii=False)
    if rendered == assertion.value:
        return AssertResult(assertion, "passed")
    return AssertResult(assertion, "failed", assertion.message or f"{assertion.path} is {rendered!r}")
