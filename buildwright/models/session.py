"""
Generation session models.

A session is one generation run: its prompt, the phase it is in, the state of
each agent and the questions currently waiting for the user.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..core.exceptions import PipelineError
from ..core.types import utcnow


class Phase(str, Enum):
    """Pipeline phases plus the idle and terminal states."""

    IDLE = "idle"
    INTAKE = "intake"
    RESEARCH = "research"
    ARCHITECTURE = "architecture"
    PLAN_VALIDATION = "plan_validation"
    BUILDING = "building"
    VERIFICATION = "verification"
    DEPLOYMENT = "deployment"
    COMPLETE = "complete"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETE, Phase.FAILED, Phase.ABORTED)


_PHASE_LABELS = {
    Phase.IDLE: "Idle",
    Phase.INTAKE: "Understanding the request",
    Phase.RESEARCH: "Researching",
    Phase.ARCHITECTURE: "Designing the architecture",
    Phase.PLAN_VALIDATION: "Validating the plan",
    Phase.BUILDING: "Building",
    Phase.VERIFICATION: "Verifying",
    Phase.DEPLOYMENT: "Deploying",
    Phase.COMPLETE: "Complete",
    Phase.FAILED: "Failed",
    Phase.ABORTED: "Aborted",
}

PIPELINE_PHASES: tuple[Phase, ...] = (
    Phase.INTAKE,
    Phase.RESEARCH,
    Phase.ARCHITECTURE,
    Phase.PLAN_VALIDATION,
    Phase.BUILDING,
    Phase.VERIFICATION,
    Phase.DEPLOYMENT,
)


class PhaseStatus(str, Enum):
    """Status of a pipeline phase."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PhaseRecord(BaseModel):
    """Bookkeeping for one phase of a session."""

    phase: Phase
    label: str
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    agent: str | None = None
    attempts: int = 0
    error: str | None = None


class AgentStatus(str, Enum):
    """Lifecycle of an agent within a session."""

    IDLE = "idle"
    ACTIVE = "active"
    WAITING_FOR_USER = "waiting_for_user"
    COMPLETED = "completed"
    ERROR = "error"


class AgentState(BaseModel):
    """Live state of one agent, updated by the loop and by progress tools."""

    name: str
    status: AgentStatus = AgentStatus.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    tokens_used: int = 0
    calls_made: int = 0
    confidence: float | None = None
    last_message: str | None = None
    error: str | None = None


class GenerationOptions(BaseModel):
    """Per-run switches supplied with the generation request."""

    skip_research: bool | None = None
    skip_deployment: bool | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GenerationProgress(BaseModel):
    """Polling view of a session."""

    session_id: str
    current_phase: Phase
    percentage: int
    completed_phases: int
    active_phases: int
    pending_phases: int
    failed_phases: int
    skipped_phases: int
    total_phases: int
    agents: dict[str, AgentState] = Field(default_factory=dict)


def _initial_phases() -> dict[Phase, PhaseRecord]:
    return {p: PhaseRecord(phase=p, label=p.label) for p in PIPELINE_PHASES}


class GenerationSession(BaseModel):
    """Mutable state of one generation run."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    prompt: str
    project_name: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    current_phase: Phase = Phase.IDLE
    phases: dict[Phase, PhaseRecord] = Field(default_factory=_initial_phases)
    agents: dict[str, AgentState] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    def agent(self, name: str) -> AgentState:
        state = self.agents.get(name)
        if state is None:
            state = AgentState(name=name)
            self.agents[name] = state
        return state

    @property
    def active_phase(self) -> Phase | None:
        active = [r.phase for r in self.phases.values() if r.status == PhaseStatus.ACTIVE]
        return active[0] if active else None

    def start_phase(self, phase: Phase, agent: str | None = None) -> PhaseRecord:
        """Mark ``phase`` active. Only one phase may be active at a time."""
        current = self.active_phase
        if current is not None and current != phase:
            raise PipelineError(
                message=f"cannot start {phase.value} while {current.value} is active",
                stage=phase.value,
                session_id=self.session_id,
            )
        record = self.phases[phase]
        record.status = PhaseStatus.ACTIVE
        record.started_at = utcnow()
        record.ended_at = None
        record.error = None
        record.agent = agent
        record.attempts += 1
        return record

    def finish_phase(self, phase: Phase, status: PhaseStatus, error: str | None = None) -> PhaseRecord:
        record = self.phases[phase]
        record.status = status
        record.ended_at = utcnow()
        record.error = error
        return record

    def progress(self) -> GenerationProgress:
        counts = {status: 0 for status in PhaseStatus}
        for record in self.phases.values():
            counts[record.status] += 1
        total = len(self.phases)
        done = counts[PhaseStatus.COMPLETED] + counts[PhaseStatus.SKIPPED]
        percentage = 100 if self.current_phase == Phase.COMPLETE else round(100 * done / total)
        return GenerationProgress(
            session_id=self.session_id,
            current_phase=self.current_phase,
            percentage=percentage,
            completed_phases=counts[PhaseStatus.COMPLETED],
            active_phases=counts[PhaseStatus.ACTIVE],
            pending_phases=counts[PhaseStatus.PENDING],
            failed_phases=counts[PhaseStatus.FAILED],
            skipped_phases=counts[PhaseStatus.SKIPPED],
            total_phases=total,
            agents={name: state.model_copy() for name, state in self.agents.items()},
        )


class PendingQuestion(BaseModel):
    """A clarification request waiting for the user."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str
    agent: str
    question: str
    question_type: Literal["text", "choice", "confirm"] = "text"
    options: list[str] | None = None
    asked_at: datetime = Field(default_factory=utcnow)
    deadline: datetime


class QuestionOutcome(BaseModel):
    """How a pending question was resolved."""

    question_id: str
    answered: bool
    response: Any = None
    timed_out: bool = False
