"""Cooperative cancellation for in-flight runs."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from agentkit.errors import RunCancelledError

T = TypeVar("T")


class CancelToken:
    """Signal a caller can set to abort a ``process_message`` call.

    The runtime checks the token between iterations and races it against
    every backend and tool call.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "cancelled by caller"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self.reason)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first."""
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelledError(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise RunCancelledError(self.reason)


async def guarded(awaitable: Awaitable[T], *, timeout: float | None, token: CancelToken | None) -> T:
    """Await with an optional timeout and cancel token. Timeouts raise ``TimeoutError``."""
    async with asyncio.timeout(timeout):
        if token is None:
            return await awaitable
        return await token.race(awaitable)
