"""Agent finite-state machine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from agentkit.errors import UnknownStateError
from agentkit.spec.models import AgentManifest, State, Transition
from agentkit.triggers import TRIGGER_MATCHERS, TransitionContext
from agentkit.types import utcnow


@dataclass(frozen=True)
class TransitionOutcome:
    transitioned: bool
    from_state: str
    to_state: str
    trigger: Transition | None = None


class StateMachine:
    """Holds the current state pointer of one session and applies transitions."""

    def __init__(
        self,
        manifest: AgentManifest,
        initial_state: str | None = None,
        *,
        entered_at: datetime | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._manifest = manifest
        self._clock = clock
        state_id = initial_state or manifest.fsm.initial_state
        if manifest.get_state(state_id) is None:
            raise UnknownStateError(state_id)
        self._current_id = state_id
        self._entered_at = entered_at or clock()

    @property
    def current_state_id(self) -> str:
        return self._current_id

    @property
    def current_state(self) -> State:
        state = self._manifest.get_state(self._current_id)
        if state is None:
            raise UnknownStateError(self._current_id)
        return state

    @property
    def state_entered_at(self) -> datetime:
        return self._entered_at

    def evaluate_transitions(self, context: TransitionContext) -> TransitionOutcome:
        """Apply the first matching transition of the active state, highest priority first."""
        from_state = self._current_id
        # sorted() is stable: equal priorities keep declaration order.
        ordered = sorted(self.current_state.transitions, key=lambda item: item.priority, reverse=True)
        for transition in ordered:
            matcher = TRIGGER_MATCHERS.get(transition.when.type)
            if matcher is None or not matcher(transition.when.value, context):
                continue
            self._move(transition.to_state)
            logger.info(
                "fsm.transition from={} to={} trigger={}:{!r}",
                from_state,
                transition.to_state,
                transition.when.type,
                transition.when.value,
            )
            return TransitionOutcome(
                transitioned=True,
                from_state=from_state,
                to_state=transition.to_state,
                trigger=transition,
            )
        return TransitionOutcome(transitioned=False, from_state=from_state, to_state=from_state)

    def transition_to(self, state_id: str) -> None:
        self._move(state_id)

    def go_to_fallback(self) -> bool:
        fallback = self._manifest.fsm.fallback_state
        if not fallback:
            return False
        logger.info("fsm.fallback from={} to={}", self._current_id, fallback)
        self._move(fallback)
        return True

    def is_terminal(self) -> bool:
        return self.current_state.is_terminal

    def _move(self, state_id: str) -> None:
        if self._manifest.get_state(state_id) is None:
            raise UnknownStateError(state_id)
        self._current_id = state_id
        self._entered_at = self._clock()
