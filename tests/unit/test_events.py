"""Unit tests for the event stream."""

import asyncio

import pytest

from buildwright.events import EventStream, EventType


class TestEventStream:
    """Tests for ordering, history and subscribers."""

    def test_sequences_are_per_session(self):
        """Test that each session numbers its events from 1."""
        stream = EventStream()
        stream.emit(EventType.GENERATION_STARTED, "a")
        stream.emit(EventType.PHASE_STARTED, "a", {"label": "x"}, phase="intake")
        stream.emit(EventType.GENERATION_STARTED, "b")

        assert [e.sequence for e in stream.history("a")] == [1, 2]
        assert [e.sequence for e in stream.history("b")] == [1]
        assert stream.history("a")[1].metadata.phase == "intake"

    def test_history_after_sequence(self):
        """Test replay from a given sequence."""
        stream = EventStream()
        for _ in range(5):
            stream.emit(EventType.AGENT_MESSAGE, "s")

        assert [e.sequence for e in stream.history("s", after_sequence=3)] == [4, 5]
        assert stream.history("unknown") == []

    def test_bounded_log_keeps_counting(self):
        """Test that trimming old events keeps sequences monotonic."""
        stream = EventStream(max_events_per_session=3)
        for _ in range(5):
            stream.emit(EventType.AGENT_MESSAGE, "s")

        assert [e.sequence for e in stream.history("s")] == [3, 4, 5]

    def test_terminal_event_closes_and_restart_reopens(self):
        """Test that a terminal event closes the log and a new start reopens it."""
        stream = EventStream()
        stream.emit(EventType.GENERATION_STARTED, "s")
        stream.emit(EventType.GENERATION_FAILED, "s")
        assert stream.is_closed("s")

        stream.emit(EventType.GENERATION_STARTED, "s")
        assert not stream.is_closed("s")

    def test_subscribers_and_isolation(self):
        """Test that a failing subscriber does not stop delivery to others."""
        stream = EventStream()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        stream.subscribe(broken)
        unsubscribe = stream.subscribe(received.append)
        stream.emit(EventType.AGENT_MESSAGE, "s")
        unsubscribe()
        stream.emit(EventType.AGENT_MESSAGE, "s")

        assert len(received) == 1

    def test_sse_frame(self):
        """Test server-sent-events rendering."""
        stream = EventStream()
        event = stream.emit(EventType.FILE_CREATED, "s", {"path": "index.html"})

        frame = event.to_sse()
        assert frame.startswith("id: 1\nevent: file:created\ndata: ")
        assert frame.endswith("\n\n")

    def test_drop_session(self):
        """Test that dropping a session forgets its log."""
        stream = EventStream()
        stream.emit(EventType.AGENT_MESSAGE, "s")
        stream.drop_session("s")

        assert stream.history("s") == []


@pytest.mark.asyncio
class TestEventFeed:
    """Tests for live feeds."""

    async def test_feed_replays_then_follows_until_terminal(self):
        """Test that a feed replays history, follows live events and closes on completion."""
        stream = EventStream()
        stream.emit(EventType.GENERATION_STARTED, "s")

        async def produce():
            await asyncio.sleep(0)
            stream.emit(EventType.PHASE_STARTED, "s")
            stream.emit(EventType.GENERATION_COMPLETED, "s")
            stream.emit(EventType.AGENT_MESSAGE, "s")

        producer = asyncio.create_task(produce())
        received = [e.type async for e in stream.feed("s")]
        await producer

        assert received == [
            EventType.GENERATION_STARTED,
            EventType.PHASE_STARTED,
            EventType.GENERATION_COMPLETED,
        ]

    async def test_feed_of_closed_session_only_replays(self):
        """Test that a feed on a finished session ends after replay."""
        stream = EventStream()
        stream.emit(EventType.GENERATION_STARTED, "s")
        stream.emit(EventType.GENERATION_ABORTED, "s")

        received = [e.sequence async for e in stream.feed("s", after_sequence=1)]
        assert received == [2]
