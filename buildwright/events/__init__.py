"""Event stream for live progress reporting."""

from .models import TERMINAL_EVENTS, Event, EventMetadata, EventType
from .stream import EventStream

__all__ = ["Event", "EventMetadata", "EventStream", "EventType", "TERMINAL_EVENTS"]
