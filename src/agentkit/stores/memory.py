"""Process-local stores, mainly for tests and single-process use."""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Callable
from typing import Any

from agentkit.types import Run, SessionState


class InMemoryMemoryStore:
    """Dict-backed memory store.

    Values are deep-copied on the way in and out, so a caller mutating a
    loaded session does not change what is stored until it is saved again.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionState] = {}
        self._memory: dict[tuple[str, str], tuple[Any, float | None]] = {}

    async def get_session_state(self, session_id: str) -> SessionState | None:
        with self._lock:
            state = self._sessions.get(session_id)
            return state.model_copy(deep=True) if state is not None else None

    async def set_session_state(self, session_id: str, state: SessionState) -> None:
        with self._lock:
            self._sessions[session_id] = state.model_copy(deep=True)

    async def get_long_term_memory(self, namespace: str, key: str) -> Any:
        with self._lock:
            entry = self._memory.get((namespace, key))
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._memory[(namespace, key)]
                return None
            return copy.deepcopy(value)

    async def set_long_term_memory(self, namespace: str, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._memory[(namespace, key)] = (copy.deepcopy(value), expires_at)

    def session_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)


class InMemoryRunSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: list[Run] = []

    async def append(self, run: Run) -> None:
        with self._lock:
            self._runs.append(run.model_copy(deep=True))

    @property
    def runs(self) -> list[Run]:
        with self._lock:
            return list(self._runs)
