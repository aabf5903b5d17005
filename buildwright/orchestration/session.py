"""
Session manager.

Tracks live orchestrator runs: starts them as background tasks, routes user
answers and abort requests to them, exposes their event feeds and progress,
and evicts them after completion plus a grace period or after a maximum age.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from ..core.cancellation import AbortSignal
from ..core.config import SessionConfig
from ..core.exceptions import PipelineError, RateLimitExceededError
from ..core.logging import get_logger
from ..events import Event
from ..models.session import GenerationOptions, GenerationProgress, GenerationSession
from ..resilience import SlidingWindowRateLimiter
from .orchestrator import GenerationResult, Orchestrator

logger = get_logger(__name__)


@dataclass
class _Entry:
    session: GenerationSession
    abort: AbortSignal
    task: asyncio.Task[GenerationResult]
    started_at: float
    completed_at: float | None = None
    result: GenerationResult | None = None
    expired: bool = False


class SessionManager:
    """Registry of running and recently finished generation sessions."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        config: SessionConfig | None = None,
        *,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or orchestrator.config.session
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(self.config.rate_limit_per_minute, 60.0)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._sweeper: asyncio.Task[None] | None = None

    # -- lifecycle -----------------------------------------------------------

    def start(
        self,
        prompt: str,
        project_name: str,
        options: GenerationOptions | None = None,
    ) -> GenerationSession:
        """Start a generation run in the background.

        Raises:
            RateLimitExceededError: The requesting user started too many runs recently.
        """
        options = options or GenerationOptions()
        identifier = options.user_id or "anonymous"
        decision = self.rate_limiter.check(identifier)
        if not decision.allowed:
            raise RateLimitExceededError(
                message=f"Too many generation requests; retry in {decision.reset_after_seconds:.0f}s",
                identifier=identifier,
                retry_after_seconds=decision.reset_after_seconds,
            )

        self.evict_expired()
        session = self.orchestrator.create_session(prompt, project_name, options)
        self._launch(session)
        return session

    async def resume(self, session_id: str) -> GenerationSession:
        """Continue a session from its latest checkpoint.

        Raises:
            PipelineError: No checkpoint exists, or the session is still running.
        """
        entry = self._entries.get(session_id)
        if entry is not None and not entry.task.done():
            raise PipelineError(message="session is still running", stage="resume", session_id=session_id)
        checkpoint = await self.orchestrator.checkpoints.latest(session_id)
        if checkpoint is None:
            raise PipelineError(message="no checkpoint to resume from", stage="resume", session_id=session_id)

        session = checkpoint.session.model_copy(deep=True)
        session.completed_at = None
        session.error = None
        self._launch(session, checkpoint)
        logger.info("Session resumed", session_id=session_id, phase=checkpoint.phase.value)
        return session

    def _launch(self, session: GenerationSession, checkpoint: Any = None) -> None:
        abort = AbortSignal(session.session_id)
        task = asyncio.create_task(
            self.orchestrator.run(session, abort=abort, resume_from=checkpoint),
            name=f"generation-{session.session_id}",
        )
        self._entries[session.session_id] = _Entry(
            session=session,
            abort=abort,
            task=task,
            started_at=self.clock(),
        )
        task.add_done_callback(lambda t, sid=session.session_id: self._on_done(sid, t))
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep(), name="session-sweeper")

    async def _sweep(self) -> None:
        while self._entries:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            self.evict_expired()

    def _on_done(self, session_id: str, task: asyncio.Task[GenerationResult]) -> None:
        entry = self._entries.get(session_id)
        if entry is None or entry.task is not task:
            return
        entry.completed_at = self.clock()
        if task.cancelled():
            logger.warning("Generation task cancelled", session_id=session_id)
        elif task.exception() is not None:
            logger.error("Generation task crashed", session_id=session_id, error=str(task.exception()))
        else:
            entry.result = task.result()
        if entry.expired:
            self._evict(session_id)

    # -- queries -------------------------------------------------------------

    def get(self, session_id: str) -> GenerationSession | None:
        entry = self._entries.get(session_id)
        return entry.session if entry else None

    def is_running(self, session_id: str) -> bool:
        entry = self._entries.get(session_id)
        return entry is not None and not entry.task.done()

    def active_sessions(self) -> list[str]:
        return [sid for sid, entry in self._entries.items() if not entry.task.done()]

    def progress(self, session_id: str) -> GenerationProgress | None:
        entry = self._entries.get(session_id)
        return entry.session.progress() if entry else None

    def feed(self, session_id: str, after_sequence: int = 0) -> AsyncIterator[Event]:
        """Replay and follow a session's events until its terminal event."""
        return self.orchestrator.events.feed(session_id, after_sequence)

    async def wait(self, session_id: str) -> GenerationResult:
        """Wait for a session to finish and return its result.

        Raises:
            KeyError: Unknown session.
        """
        entry = self._entries[session_id]
        return await asyncio.shield(entry.task)

    # -- control -------------------------------------------------------------

    def submit_answer(self, session_id: str, question_id: str, response: Any) -> bool:
        """Deliver a user answer. A no-op for unknown or already resolved questions."""
        pending = self.orchestrator.responses.pending(session_id)
        if not any(q.id == question_id for q in pending):
            logger.debug("Answer does not match a pending question", session_id=session_id, question_id=question_id)
            return False
        return self.orchestrator.responses.submit(question_id, response)

    def abort(self, session_id: str, reason: str = "aborted by user") -> bool:
        """Signal a running session to stop. Returns False if it is not running."""
        entry = self._entries.get(session_id)
        if entry is None or entry.task.done():
            return False
        entry.abort.abort(reason)
        self.orchestrator.responses.cancel_session(session_id)
        logger.info("Session abort requested", session_id=session_id, reason=reason)
        return True

    def evict_expired(self) -> list[str]:
        """Drop finished sessions past the grace period or maximum age, and abort running sessions past the maximum age."""
        now = self.clock()
        evicted: list[str] = []
        for session_id, entry in list(self._entries.items()):
            overdue = now - entry.started_at >= self.config.max_age_seconds
            if entry.completed_at is not None:
                if overdue or now - entry.completed_at >= self.config.completion_grace_seconds:
                    self._evict(session_id)
                    evicted.append(session_id)
            elif overdue and not entry.expired:
                entry.expired = True
                entry.abort.abort("session exceeded maximum age")
                self.orchestrator.responses.cancel_session(session_id)
                logger.warning("Session exceeded maximum age", session_id=session_id)
        return evicted

    def _evict(self, session_id: str) -> None:
        self._entries.pop(session_id, None)
        self.orchestrator.events.drop_session(session_id)
        self.orchestrator.checkpoints.forget(session_id)
        logger.debug("Session evicted", session_id=session_id)

    async def shutdown(self) -> None:
        """Abort every running session and wait for them to finish."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        tasks = []
        for session_id, entry in list(self._entries.items()):
            if not entry.task.done():
                entry.abort.abort("shutting down")
                self.orchestrator.responses.cancel_session(session_id)
                tasks.append(entry.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
