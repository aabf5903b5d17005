"""
Clarification rendezvous between agents and the user.

An agent asks a question and suspends; the answer arrives later from the
transport (CLI prompt, HTTP endpoint) through ``submit``. Each question is
resolved exactly once: by the answer, by its timeout, or by the session
being aborted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..core.cancellation import AbortSignal
from ..core.exceptions import SessionAbortedError
from ..core.logging import get_logger
from ..core.types import utcnow
from ..events import EventStream, EventType
from ..models.session import PendingQuestion, QuestionOutcome

logger = get_logger(__name__)


@dataclass
class _Waiter:
    question: PendingQuestion
    future: asyncio.Future[QuestionOutcome]
    timer: asyncio.TimerHandle


class ResponseHandler:
    """Tracks pending questions and resolves them."""

    def __init__(self, events: EventStream, default_timeout: float = 120.0) -> None:
        self.events = events
        self.default_timeout = default_timeout
        self._waiters: dict[str, _Waiter] = {}

    async def ask(
        self,
        session_id: str,
        agent: str,
        question: str,
        *,
        question_type: str = "text",
        options: list[str] | None = None,
        timeout: float | None = None,
        abort: AbortSignal | None = None,
        phase: str | None = None,
    ) -> QuestionOutcome:
        """Publish a question and wait for its resolution.

        Returns:
            QuestionOutcome: ``answered`` with the response, or ``timed_out``.

        Raises:
            SessionAbortedError: If ``abort`` fires while waiting.
        """
        loop = asyncio.get_running_loop()
        timeout = timeout if timeout is not None else self.default_timeout
        pending = PendingQuestion(
            session_id=session_id,
            agent=agent,
            question=question,
            question_type=question_type,  # type: ignore[arg-type]
            options=options,
            deadline=utcnow() + timedelta(seconds=timeout),
        )
        future: asyncio.Future[QuestionOutcome] = loop.create_future()
        timer = loop.call_later(timeout, self._expire, pending.id)
        self._waiters[pending.id] = _Waiter(pending, future, timer)

        self.events.emit(
            EventType.USER_INPUT_REQUIRED,
            session_id,
            {
                "question_id": pending.id,
                "question": question,
                "question_type": question_type,
                "options": options,
                "timeout_seconds": timeout,
            },
            agent=agent,
            phase=phase,
        )

        try:
            if abort is not None:
                return await abort.guard(future)
            return await future
        finally:
            waiter = self._waiters.pop(pending.id, None)
            if waiter is not None:
                waiter.timer.cancel()

    def submit(self, question_id: str, response: Any) -> bool:
        """Deliver the user's answer.

        Returns:
            bool: False when the question is unknown or already resolved.
        """
        waiter = self._waiters.get(question_id)
        if waiter is None or waiter.future.done():
            logger.debug("Ignoring answer for unknown question", question_id=question_id)
            return False
        waiter.timer.cancel()
        waiter.future.set_result(QuestionOutcome(question_id=question_id, answered=True, response=response))
        self.events.emit(
            EventType.USER_RESPONSE_RECEIVED,
            waiter.question.session_id,
            {"question_id": question_id, "response": response},
            agent=waiter.question.agent,
        )
        return True

    def _expire(self, question_id: str) -> None:
        waiter = self._waiters.get(question_id)
        if waiter is None or waiter.future.done():
            return
        waiter.future.set_result(QuestionOutcome(question_id=question_id, answered=False, timed_out=True))
        self.events.emit(
            EventType.USER_INPUT_TIMEOUT,
            waiter.question.session_id,
            {"question_id": question_id, "question": waiter.question.question},
            agent=waiter.question.agent,
        )
        logger.info("Question timed out", question_id=question_id, agent=waiter.question.agent)

    def pending(self, session_id: str | None = None) -> list[PendingQuestion]:
        return [
            w.question
            for w in self._waiters.values()
            if not w.future.done() and (session_id is None or w.question.session_id == session_id)
        ]

    def cancel_session(self, session_id: str) -> int:
        """Cancel every pending question of a session. Returns how many were cancelled."""
        cancelled = 0
        for question_id, waiter in list(self._waiters.items()):
            if waiter.question.session_id != session_id:
                continue
            waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(
                    SessionAbortedError(message="question cancelled", session_id=session_id)
                )
                cancelled += 1
            self._waiters.pop(question_id, None)
        return cancelled
