"""Phase state machine, sessions and the plumbing around them."""

from .checkpoint import Checkpoint, CheckpointManager, CheckpointSummary
from .coverage import CoverageReport, validate_plan_coverage
from .metrics import MetricsCollector
from .orchestrator import GenerationResult, Orchestrator
from .phases import TRANSITIONS, can_transition, is_backward, next_phase
from .responses import ResponseHandler
from .session import SessionManager

__all__ = [
    "Checkpoint",
    "CheckpointManager",
    "CheckpointSummary",
    "CoverageReport",
    "validate_plan_coverage",
    "MetricsCollector",
    "GenerationResult",
    "Orchestrator",
    "TRANSITIONS",
    "can_transition",
    "is_backward",
    "next_phase",
    "ResponseHandler",
    "SessionManager",
]
