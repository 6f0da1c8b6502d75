"""Execution loop driving one agent turn."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from agentkit.compiler import CompilerOptions, RetrievalHint, compile_prompt
from agentkit.errors import AgentKitError, BackendError, IterationLimitExceededError, RunCancelledError
from agentkit.fsm import StateMachine
from agentkit.logging_utils import bind_run
from agentkit.policy import PolicyGate
from agentkit.runtime.cancel import CancelToken, guarded
from agentkit.runtime.internal_tools import InternalTools
from agentkit.runtime.options import RuntimeOptions
from agentkit.runtime.protocols import MemoryStore, ModelBackend, RunSink, ToolExecutor
from agentkit.spec.models import AgentManifest, is_internal_tool
from agentkit.triggers import TransitionContext
from agentkit.types import (
    AssistantMessage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    NamedToolResult,
    Run,
    RunStatus,
    RunStep,
    SessionState,
    StepTokens,
    SystemMessage,
    ToolCall,
    ToolMessage,
    ToolResult,
    Usage,
    UserMessage,
    utcnow,
)


@dataclass(frozen=True)
class AgentResponse:
    message: str
    run: Run
    state: str
    is_terminal: bool


@dataclass
class _Turn:
    """Loop state of one ``process_message`` call."""

    run: Run
    session: SessionState
    machine: StateMachine
    user_text: str
    state_iteration: int = 0
    total_iterations: int = 0
    state_tool_calls: int = 0
    final_text: str | None = None
    answered_in_terminal: bool = False
    last_results: list[NamedToolResult] = field(default_factory=list)


class AgentRuntime:
    """Runs user messages through the agent FSM, the model backend and the tools.

    The runtime holds only the immutable manifest, its collaborators and the
    options, so one instance may serve many sessions concurrently. Session
    state lives in the memory store and is loaded and saved once per call.
    """

    def __init__(
        self,
        manifest: AgentManifest,
        *,
        backend: ModelBackend,
        memory: MemoryStore,
        tools: ToolExecutor,
        run_sink: RunSink | None = None,
        options: RuntimeOptions | None = None,
        user_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._manifest = manifest
        self._backend = backend
        self._memory = memory
        self._tools = tools
        self._run_sink = run_sink
        self._options = options or RuntimeOptions()
        self._user_id = user_id
        self._clock = clock
        self._gate = PolicyGate(manifest)
        self._internal = InternalTools(memory)

    @property
    def manifest(self) -> AgentManifest:
        return self._manifest

    @property
    def options(self) -> RuntimeOptions:
        return self._options

    @property
    def gate_active(self) -> bool:
        """Whether a disallowed call triggers a corrective turn instead of a refused result.

        With a backend that enforces tool choice, disallowed calls are still never
        executed; they are answered with a failed result.
        """
        return self._options.enable_policy_gate and not getattr(self._backend, "supports_tool_choice", False)

    async def process_message(
        self,
        session_id: str,
        text: str,
        *,
        cancel: CancelToken | None = None,
        hints: Sequence[RetrievalHint] = (),
    ) -> AgentResponse:
        session = await self._load_session(session_id)
        session.history.append(UserMessage(content=text))
        run = Run(
            agent_id=self._manifest.metadata.id,
            agent_version=self._manifest.version,
            session_id=session_id,
            user_id=self._user_id,
            created_at=self._clock(),
        )

        with bind_run(run.id):
            logger.info("run.start run_id={} session_id={} state={}", run.id, session_id, session.current_state)
            try:
                machine = StateMachine(
                    self._manifest,
                    session.current_state,
                    entered_at=session.state_entered_at,
                    clock=self._clock,
                )
                turn = _Turn(run=run, session=session, machine=machine, user_text=text)
                await self._loop(turn, cancel, tuple(hints))
            except RunCancelledError as exc:
                await self._finalize_after_error(run, session, "cancelled", str(exc))
                raise
            except asyncio.CancelledError:
                await self._finalize_after_error(run, session, "cancelled", "task cancelled")
                raise
            except Exception as exc:
                await self._finalize_after_error(run, session, "failed", str(exc) or type(exc).__name__)
                raise

            await self._finalize(run, session, "completed")

        is_terminal = turn.machine.is_terminal() and turn.answered_in_terminal
        return AgentResponse(
            message=turn.final_text or "",
            run=run,
            state=turn.machine.current_state_id,
            is_terminal=is_terminal,
        )

    async def _load_session(self, session_id: str) -> SessionState:
        session = await self._memory.get_session_state(session_id)
        if session is not None:
            return session
        now = self._clock()
        logger.info("session.create session_id={} state={}", session_id, self._manifest.fsm.initial_state)
        return SessionState(
            current_state=self._manifest.fsm.initial_state,
            created_at=now,
            updated_at=now,
            state_entered_at=now,
        )

    async def _loop(self, turn: _Turn, cancel: CancelToken | None, hints: tuple[RetrievalHint, ...]) -> None:
        limit = self._options.max_total_iterations
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if turn.total_iterations >= limit:
                raise IterationLimitExceededError(limit, turn.machine.current_state_id, scope="total")
            turn.total_iterations += 1
            self._enter_iteration(turn)
            if await self._step(turn, cancel, hints):
                return

    def _enter_iteration(self, turn: _Turn) -> None:
        state = turn.machine.current_state
        cap = min(self._options.max_iterations_per_state, state.max_iterations)
        if turn.state_iteration >= cap:
            fallback = self._manifest.fsm.fallback_state
            if not fallback or fallback == state.id:
                raise IterationLimitExceededError(cap, state.id)
            logger.warning("run.state.exhausted state={} limit={} fallback={}", state.id, cap, fallback)
            turn.machine.go_to_fallback()
            self._reset_state_counters(turn)
        turn.state_iteration += 1

    async def _step(self, turn: _Turn, cancel: CancelToken | None, hints: tuple[RetrievalHint, ...]) -> bool:
        """Run one iteration. Returns True when the loop should stop."""
        session = turn.session
        state_id = turn.machine.current_state_id
        step_number = len(turn.run.steps) + 1
        logger.info(
            "run.step.start run_id={} step={} state={} iteration={}",
            turn.run.id,
            step_number,
            state_id,
            turn.state_iteration,
        )

        compiled = compile_prompt(
            self._manifest,
            state_id,
            CompilerOptions(
                max_tool_description_length=self._options.max_tool_description_length,
                retrieval_hints=hints,
            ),
        )
        request = ChatRequest(
            messages=(SystemMessage(content=compiled.system), *self._window(session.history)),
            tools=compiled.tools,
            tool_choice=compiled.tool_choice if getattr(self._backend, "supports_tool_choice", False) else None,
            temperature=self._options.temperature,
            max_tokens=self._options.max_tokens,
        )

        started = time.perf_counter()
        response = await self._call_model(request, cancel)
        usage = response.usage or Usage()
        tokens = StepTokens(
            prompt=usage.prompt_tokens,
            completion=usage.completion_tokens,
            total=usage.total_tokens or usage.prompt_tokens + usage.completion_tokens,
        )
        rates = self._options.cost_per_token
        cost = usage.cost(rates.prompt, rates.completion)
        # Spent tokens count even if a tool later fails the run.
        turn.run.total_tokens += tokens.total
        turn.run.total_cost += cost
        message = response.message
        step_input = turn.user_text if step_number == 1 else None

        refused: tuple[str, ...] = ()
        if message.tool_calls and self._options.enable_policy_gate:
            decision = self._gate.validate(state_id, message.tool_calls)
            refused = decision.blocked_tools
            if not decision.allowed and self.gate_active:
                logger.warning(
                    "policy.blocked run_id={} state={} tools={}",
                    turn.run.id,
                    state_id,
                    ",".join(decision.blocked_tools),
                )
                correction = self._gate.generate_constraint_message(state_id, decision.blocked_tools)
                session.history.append(message)
                session.history.append(UserMessage(content=correction, synthetic=True))
                self._record_step(
                    turn,
                    RunStep(
                        run_id=turn.run.id,
                        step_number=step_number,
                        state=state_id,
                        input=step_input,
                        output=message.content or None,
                        tool_calls=message.tool_calls,
                        blocked_tools=decision.blocked_tools,
                        tokens=tokens,
                        cost_estimate=cost,
                        latency_ms=_elapsed_ms(started),
                        created_at=self._clock(),
                    ),
                )
                return False

        results: list[NamedToolResult] = []
        if message.tool_calls:
            session.history.append(message)
            try:
                for call in message.tool_calls:
                    if call.name in refused:
                        logger.warning("policy.refused run_id={} state={} tool={}", turn.run.id, state_id, call.name)
                        result = ToolResult.fail(f"Tool '{call.name}' is not allowed in state '{state_id}'")
                    else:
                        result = await self._execute_tool(turn, call, cancel)
                    results.append(NamedToolResult(tool_name=call.name, call_id=call.id, result=result))
                    session.history.append(
                        ToolMessage(content=_tool_message_content(result), tool_call_id=call.id, name=call.name)
                    )
            except (AgentKitError, asyncio.CancelledError) as exc:
                _answer_pending(session.history, message.tool_calls[len(results) :], exc)
                raise
            turn.state_tool_calls += len(message.tool_calls)
        else:
            session.history.append(message)
            turn.final_text = message.content
            turn.answered_in_terminal = turn.machine.is_terminal()
        turn.last_results = results

        self._record_step(
            turn,
            RunStep(
                run_id=turn.run.id,
                step_number=step_number,
                state=state_id,
                input=step_input,
                output=message.content or None,
                tool_calls=message.tool_calls,
                tool_results=tuple(named.result for named in results),
                blocked_tools=refused,
                tokens=tokens,
                cost_estimate=cost,
                latency_ms=_elapsed_ms(started),
                created_at=self._clock(),
            ),
        )

        outcome = turn.machine.evaluate_transitions(
            TransitionContext(
                state_entered_at=turn.machine.state_entered_at,
                now=self._clock(),
                last_user_message=turn.user_text,
                last_assistant_message=message.content or None,
                last_tool_results=tuple(results),
                metadata=session.metadata,
                iteration=turn.state_iteration,
                tool_calls_count=turn.state_tool_calls,
            )
        )
        if outcome.transitioned:
            self._reset_state_counters(turn)

        if not message.tool_calls and response.finish_reason == "stop":
            return True
        return turn.final_text is not None and turn.machine.is_terminal()

    async def _call_model(self, request: ChatRequest, cancel: CancelToken | None) -> ChatResponse:
        timeout = self._options.model_timeout_seconds
        try:
            return await guarded(self._backend.chat(request), timeout=timeout, token=cancel)
        except TimeoutError as exc:
            raise BackendError(f"model_timeout: no response within {timeout}s") from exc
        except AgentKitError:
            raise
        except Exception as exc:
            logger.exception("model.call.error")
            raise BackendError(f"model_call_error: {exc!s}") from exc

    async def _execute_tool(self, turn: _Turn, call: ToolCall, cancel: CancelToken | None) -> ToolResult:
        logger.info("tool.call.start name={} run_id={} {{ {} }}", call.name, turn.run.id, _render_args(call.arguments))
        start = time.monotonic()
        timeout = self._options.tool_timeout_seconds
        try:
            if is_internal_tool(call.name):
                result = await guarded(self._internal.run(call.name, call.arguments), timeout=timeout, token=cancel)
            else:
                tool = self._manifest.get_tool(call.name)
                if tool is None:
                    result = ToolResult.fail(f"Tool not found in registry: {call.name}")
                else:
                    result = await guarded(self._tools.execute(tool, call.arguments), timeout=timeout, token=cancel)
        except TimeoutError as exc:
            raise BackendError(f"tool_timeout: '{call.name}' did not finish within {timeout}s") from exc
        except AgentKitError:
            raise
        except Exception as exc:
            logger.exception("tool.call.error name={}", call.name)
            result = ToolResult.fail(f"{type(exc).__name__}: {exc!s}")
        finally:
            duration = (time.monotonic() - start) * 1000
            logger.info("tool.call.end name={} duration={:.3f}ms", call.name, duration)
        return result

    def _record_step(self, turn: _Turn, step: RunStep) -> None:
        run = turn.run
        run.append_step(step)
        run.total_latency_ms += step.latency_ms
        self._sync_session(turn)

    def _reset_state_counters(self, turn: _Turn) -> None:
        turn.state_iteration = 0
        turn.state_tool_calls = 0
        self._sync_session(turn)

    @staticmethod
    def _sync_session(turn: _Turn) -> None:
        turn.session.current_state = turn.machine.current_state_id
        turn.session.state_entered_at = turn.machine.state_entered_at

    def _window(self, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        window = list(history[-self._options.history_window :])
        while window and isinstance(window[0], ToolMessage):
            window.pop(0)
        return window

    async def _finalize(self, run: Run, session: SessionState, status: RunStatus, error: str | None = None) -> None:
        now = self._clock()
        run.finish(status, completed_at=now, error=error)
        session.updated_at = now
        await self._memory.set_session_state(run.session_id, session)
        if self._run_sink is not None:
            await self._run_sink.append(run)
        logger.info(
            "run.finish run_id={} status={} steps={} tokens={} cost={:.6f}",
            run.id,
            status,
            len(run.steps),
            run.total_tokens,
            run.total_cost,
        )

    async def _finalize_after_error(self, run: Run, session: SessionState, status: RunStatus, error: str) -> None:
        logger.error("run.error run_id={} status={} error={}", run.id, status, error)
        try:
            await self._finalize(run, session, status, error)
        except Exception:
            logger.exception("run.persist.error run_id={}", run.id)


def _tool_message_content(result: ToolResult) -> str:
    if result.success:
        payload: Any = result.output
    else:
        payload = {"error": result.error, "output": result.output}
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


def _render_args(arguments: dict[str, Any]) -> str:
    return ", ".join(f"{key}={value!r}" for key, value in arguments.items())


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _answer_pending(history: list[ChatMessage], calls: Sequence[ToolCall], exc: BaseException) -> None:
    """Close an interrupted tool turn so every persisted call has a result."""
    reason = f"tool call aborted: {exc!s}" if str(exc) else f"tool call aborted: {type(exc).__name__}"
    for call in calls:
        history.append(
            ToolMessage(content=_tool_message_content(ToolResult.fail(reason)), tool_call_id=call.id, name=call.name)
        )
