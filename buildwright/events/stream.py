"""
Ordered per-session event stream.

Each session owns an append-only log. ``emit`` timestamps and sequences an
event, then fans it out to callback subscribers and live feeds. A feed first
replays the log from a given sequence and then follows new events until a
terminal event has been delivered, after which it closes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from ..core.logging import get_logger
from .models import Event, EventMetadata, EventType

logger = get_logger(__name__)

EventCallback = Callable[[Event], None]


class _SessionLog:
    def __init__(self) -> None:
        self.events: list[Event] = []
        self.sequence = 0
        self.closed = False
        self.queues: set[asyncio.Queue[Event]] = set()


class EventStream:
    """Pub/sub bus delivering an ordered, replayable log per session."""

    def __init__(self, max_events_per_session: int = 10_000) -> None:
        self.max_events_per_session = max_events_per_session
        self._logs: dict[str, _SessionLog] = {}
        self._subscribers: list[EventCallback] = []

    def _log(self, session_id: str) -> _SessionLog:
        log = self._logs.get(session_id)
        if log is None:
            log = _SessionLog()
            self._logs[session_id] = log
        return log

    def emit(
        self,
        event_type: EventType,
        session_id: str,
        payload: dict[str, Any] | None = None,
        *,
        agent: str | None = None,
        phase: str | None = None,
    ) -> Event:
        """Append an event to the session log and fan it out.

        Events emitted after the session's terminal event are still recorded
        but live feeds have already closed.
        """
        log = self._log(session_id)
        log.sequence += 1
        event = Event(
            type=event_type,
            session_id=session_id,
            sequence=log.sequence,
            payload=payload or {},
            metadata=EventMetadata(agent=agent, phase=phase),
        )
        log.events.append(event)
        if len(log.events) > self.max_events_per_session:
            # Drop the oldest entries; sequences keep counting
            del log.events[: len(log.events) - self.max_events_per_session]
        if event_type.is_terminal:
            log.closed = True
        elif event_type == EventType.GENERATION_STARTED:
            # A resumed run reopens the log
            log.closed = False

        for queue in list(log.queues):
            queue.put_nowait(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed", event_type=event_type.value)
        return event

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for every event of every session."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def history(self, session_id: str, after_sequence: int = 0) -> list[Event]:
        """Events of a session with sequence greater than ``after_sequence``."""
        log = self._logs.get(session_id)
        if log is None:
            return []
        return [e for e in log.events if e.sequence > after_sequence]

    def is_closed(self, session_id: str) -> bool:
        log = self._logs.get(session_id)
        return log.closed if log else False

    async def feed(self, session_id: str, after_sequence: int = 0) -> AsyncIterator[Event]:
        """Replay then follow a session's events until its terminal event."""
        log = self._log(session_id)
        queue: asyncio.Queue[Event] = asyncio.Queue()
        log.queues.add(queue)
        last = after_sequence
        try:
            for event in self.history(session_id, after_sequence):
                last = event.sequence
                yield event
                if event.type.is_terminal:
                    return
            if log.closed and queue.empty():
                return
            while True:
                event = await queue.get()
                if event.sequence <= last:
                    continue
                last = event.sequence
                yield event
                if event.type.is_terminal:
                    return
        finally:
            log.queues.discard(queue)

    def drop_session(self, session_id: str) -> None:
        """Forget a session's log (called on eviction)."""
        self._logs.pop(session_id, None)
