"""Data models for Buildwright sessions and knowledge documents."""

from .documents import (
    DeploymentRecord,
    GeneratedFile,
    PlanDocument,
    PlanTask,
    Requirement,
    RequirementsDocument,
    VerificationIssue,
    VerificationReport,
)
from .session import (
    PIPELINE_PHASES,
    AgentState,
    AgentStatus,
    GenerationOptions,
    GenerationProgress,
    GenerationSession,
    PendingQuestion,
    Phase,
    PhaseRecord,
    PhaseStatus,
    QuestionOutcome,
)

__all__ = [
    "DeploymentRecord",
    "GeneratedFile",
    "PlanDocument",
    "PlanTask",
    "Requirement",
    "RequirementsDocument",
    "VerificationIssue",
    "VerificationReport",
    "PIPELINE_PHASES",
    "AgentState",
    "AgentStatus",
    "GenerationOptions",
    "GenerationProgress",
    "GenerationSession",
    "PendingQuestion",
    "Phase",
    "PhaseRecord",
    "PhaseStatus",
    "QuestionOutcome",
]
