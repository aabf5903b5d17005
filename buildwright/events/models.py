"""
Event data models.

Events are immutable once emitted; the stream only appends and fans out.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.types import utcnow


class EventType(str, Enum):
    """Every event the orchestrator can emit."""

    GENERATION_STARTED = "generation:started"
    GENERATION_COMPLETED = "generation:completed"
    GENERATION_FAILED = "generation:failed"
    GENERATION_ABORTED = "generation:aborted"

    PHASE_STARTED = "phase:started"
    PHASE_COMPLETED = "phase:completed"
    PHASE_FAILED = "phase:failed"
    PHASE_SKIPPED = "phase:skipped"
    PHASE_TRANSITION = "phase:transition"

    AGENT_STARTED = "agent:started"
    AGENT_COMPLETED = "agent:completed"
    AGENT_ERROR = "agent:error"
    AGENT_MESSAGE = "agent:message"
    AGENT_PROGRESS = "agent:progress"
    AGENT_CONFIDENCE = "agent:confidence"
    TOOL_CALLED = "tool:called"
    TOOL_RESULT = "tool:result"

    KNOWLEDGE_WRITTEN = "knowledge:written"
    KNOWLEDGE_UPDATED = "knowledge:updated"
    KNOWLEDGE_DELETED = "knowledge:deleted"

    USER_INPUT_REQUIRED = "user:input_required"
    USER_RESPONSE_RECEIVED = "user:response_received"
    USER_INPUT_TIMEOUT = "user:input_timeout"

    FILE_CREATED = "file:created"
    FILE_UPDATED = "file:updated"
    PLAN_VALIDATED = "plan:validated"
    VERIFICATION_RESULT = "verification:result"
    DEPLOYMENT_COMPLETED = "deployment:completed"
    CHECKPOINT_CREATED = "checkpoint:created"
    BUDGET_WARNING = "budget:warning"

    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EVENTS


TERMINAL_EVENTS = frozenset(
    {
        EventType.GENERATION_COMPLETED,
        EventType.GENERATION_FAILED,
        EventType.GENERATION_ABORTED,
    }
)


class EventMetadata(BaseModel):
    """Optional attribution of an event."""

    model_config = ConfigDict(frozen=True)

    agent: str | None = None
    phase: str | None = None


class Event(BaseModel):
    """A single entry of a session's event log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str
    sequence: int = Field(description="Position in the session log, starting at 1")
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    def to_sse(self) -> str:
        """Render as a server-sent-events frame."""
        return f"id: {self.sequence}\nevent: {self.type.value}\ndata: {self.model_dump_json()}\n\n"
