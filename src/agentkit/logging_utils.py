"""Logging setup for the CLI and embedding applications.

Every record carries the id of the run that emitted it in ``extra["run"]``;
``-`` outside of a run.
"""

from __future__ import annotations

import contextlib
import os
import sys
from collections.abc import Iterator
from contextvars import ContextVar
from typing import Any, Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

NO_RUN = "-"
DEFAULT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{line} | {extra[run]} | {message}"
CHAT_FORMAT = "[{extra[run]}] {message}"

_active_run: ContextVar[str] = ContextVar("agentkit_run", default=NO_RUN)
_configured: tuple[LogProfile, str] | None = None


def current_run() -> str:
    return _active_run.get()


@contextlib.contextmanager
def bind_run(run_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``run_id``."""
    token = _active_run.set(run_id)
    try:
        yield
    finally:
        _active_run.reset(token)


def _stamp_run(record: loguru.Record) -> None:
    record["extra"].setdefault("run", current_run())


def _sink(profile: LogProfile) -> tuple[Any, str]:
    if profile == "chat":
        # Rich renders level and colours; the format only adds the run prefix.
        handler = RichHandler(
            console=get_console(),
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        return handler, CHAT_FORMAT
    return sys.stderr, DEFAULT_FORMAT


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Install the single agentkit sink.

    The level comes from ``level`` or ``AGENTKIT_LOG_LEVEL`` (default INFO).
    Calling again with the same profile and level is a no-op.
    """
    global _configured
    resolved = (level or os.getenv("AGENTKIT_LOG_LEVEL", "INFO")).upper()
    if _configured == (profile, resolved):
        return

    sink, fmt = _sink(profile)
    logger.remove()
    logger.configure(patcher=_stamp_run)
    logger.add(sink, level=resolved, format=fmt, backtrace=False, diagnose=False)
    _configured = (profile, resolved)
