"""
Abort signal shared by everything running inside one session.

An abort propagates to the in-flight model call and to any pending
clarification wait by racing the awaited work against the signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from .exceptions import SessionAbortedError

T = TypeVar("T")


class AbortSignal:
    """One-shot cancellation flag for a session."""

    def __init__(self, session_id: str = "") -> None:
        self.session_id = session_id
        self.reason: str | None = None
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted by request") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise self._error()

    def _error(self) -> SessionAbortedError:
        return SessionAbortedError(
            message=self.reason or "session aborted",
            session_id=self.session_id,
        )

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        On abort the pending work is cancelled and SessionAbortedError is raised.
        A coroutine passed to an already aborted signal is closed unstarted.
        """
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self._error()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise
        if work in done:
            waiter.cancel()
            return work.result()
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await work
        raise self._error()
