"""Core infrastructure components for Buildwright."""

from .cancellation import AbortSignal
from .config import Config, get_config
from .exceptions import (
    AgentBudgetExceededError,
    AgentLoopDetectedError,
    BudgetExceededError,
    BuildwrightError,
    CircuitOpenError,
    ContentTooLargeError,
    InvalidPathError,
    PipelineError,
    PlanCoverageIncompleteError,
    ProviderError,
    ServiceError,
    SessionAbortedError,
    ValidationError,
    VersionConflictError,
    VersionMismatchError,
)
from .logging import get_logger, setup_logging
from .types import TokenUsage, utcnow

__all__ = [
    "AbortSignal",
    "Config",
    "get_config",
    "AgentBudgetExceededError",
    "AgentLoopDetectedError",
    "BudgetExceededError",
    "BuildwrightError",
    "CircuitOpenError",
    "ContentTooLargeError",
    "InvalidPathError",
    "PipelineError",
    "PlanCoverageIncompleteError",
    "ProviderError",
    "ServiceError",
    "SessionAbortedError",
    "ValidationError",
    "VersionConflictError",
    "VersionMismatchError",
    "get_logger",
    "setup_logging",
    "TokenUsage",
    "utcnow",
]
