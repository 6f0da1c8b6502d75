"""File-backed session, memory and run persistence."""

from __future__ import annotations

import asyncio
import json
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from loguru import logger

from agentkit.types import Run, SessionState

SESSION_FILE_SUFFIX = ".json"
RUNS_FILE = "runs.jsonl"


class FileMemoryStore:
    """JSON documents under ``home``.

    Sessions live in ``home/sessions/<session>.json``; long-term memory lives
    in one document per namespace at ``home/memory/<namespace>.json``.
    Names are URL-quoted so any session id maps to a single file.
    """

    def __init__(self, home: Path, *, clock: Callable[[], float] = time.time) -> None:
        self._session_root = (home / "sessions").resolve()
        self._memory_root = (home / "memory").resolve()
        self._session_root.mkdir(parents=True, exist_ok=True)
        self._memory_root.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()

    def list_sessions(self) -> list[str]:
        with self._lock:
            names = [
                unquote(path.name.removesuffix(SESSION_FILE_SUFFIX))
                for path in self._session_root.glob(f"*{SESSION_FILE_SUFFIX}")
            ]
        return sorted(names)

    async def get_session_state(self, session_id: str) -> SessionState | None:
        return await asyncio.to_thread(self._load_session, session_id)

    async def set_session_state(self, session_id: str, state: SessionState) -> None:
        await asyncio.to_thread(self._save_session, session_id, state)

    async def get_long_term_memory(self, namespace: str, key: str) -> Any:
        return await asyncio.to_thread(self._get_memory, namespace, key)

    async def set_long_term_memory(self, namespace: str, key: str, value: Any, ttl: float | None = None) -> None:
        await asyncio.to_thread(self._set_memory, namespace, key, value, ttl)

    def _load_session(self, session_id: str) -> SessionState | None:
        path = self._session_path(session_id)
        with self._lock:
            if not path.exists():
                return None
            raw = path.read_text(encoding="utf-8")
        return SessionState.model_validate_json(raw)

    def _save_session(self, session_id: str, state: SessionState) -> None:
        path = self._session_path(session_id)
        payload = state.model_dump_json(indent=2)
        with self._lock:
            tmp = path.with_suffix(f"{SESSION_FILE_SUFFIX}.tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)

    def _get_memory(self, namespace: str, key: str) -> Any:
        with self._lock:
            entries = self._read_namespace(namespace)
            entry = entries.get(key)
            if entry is None:
                return None
            expires_at = entry.get("expires_at")
            if expires_at is not None and self._clock() >= expires_at:
                del entries[key]
                self._write_namespace(namespace, entries)
                return None
            return entry.get("value")

    def _set_memory(self, namespace: str, key: str, value: Any, ttl: float | None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            entries = self._read_namespace(namespace)
            entries[key] = {"value": value, "expires_at": expires_at}
            self._write_namespace(namespace, entries)

    def _session_path(self, session_id: str) -> Path:
        return self._session_root / f"{quote(session_id, safe='')}{SESSION_FILE_SUFFIX}"

    def _namespace_path(self, namespace: str) -> Path:
        return self._memory_root / f"{quote(namespace, safe='')}.json"

    def _read_namespace(self, namespace: str) -> dict[str, dict[str, Any]]:
        path = self._namespace_path(namespace)
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("memory.namespace.corrupt path={}", path)
            return {}
        if not isinstance(payload, dict):
            return {}
        return {key: entry for key, entry in payload.items() if isinstance(entry, dict)}

    def _write_namespace(self, namespace: str, entries: dict[str, dict[str, Any]]) -> None:
        path = self._namespace_path(namespace)
        path.write_text(json.dumps(entries, ensure_ascii=False, default=str, indent=2), encoding="utf-8")


class JsonlRunSink:
    """Append-only run log, one JSON document per line."""

    def __init__(self, home: Path) -> None:
        home.mkdir(parents=True, exist_ok=True)
        self.path = (home / RUNS_FILE).resolve()
        self._lock = threading.Lock()

    async def append(self, run: Run) -> None:
        await asyncio.to_thread(self._write_line, run.model_dump_json())

    def _write_line(self, line: str) -> None:
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def read(self) -> list[Run]:
        with self._lock:
            if not self.path.exists():
                return []
            lines = self.path.read_text(encoding="utf-8").splitlines()

        runs: list[Run] = []
        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue
            try:
                runs.append(Run.model_validate_json(line))
            except ValueError:
                logger.warning("runs.skip malformed line in {}", self.path)
                continue
        return runs
