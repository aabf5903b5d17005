"""
Custom exception hierarchy for Buildwright.

All exceptions inherit from BuildwrightError to enable consistent error handling
across the orchestrator. Each exception type includes context for debugging and logging.

Recoverability follows the propagation policy: tool-level errors are fed back to
the model, agent-loop errors end the agent run, and orchestrator-level errors
either drive a backward phase transition or fail the session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BuildwrightError(Exception):
    """Base exception for all Buildwright errors."""

    message: str
    context: dict[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __str__(self) -> str:
        ctx = f" | context: {self.context}" if self.context else ""
        cause = f" | caused by: {self.cause}" if self.cause else ""
        return f"{self.message}{ctx}{cause}"


@dataclass
class ValidationError(BuildwrightError):
    """Raised when input or output validation fails."""

    field_name: str | None = None

    def __str__(self) -> str:
        base = super().__str__()
        if self.field_name:
            return f"Validation failed for '{self.field_name}': {base}"
        return f"Validation failed: {base}"


# --- Knowledge store -----------------------------------------------------


@dataclass
class KnowledgeError(BuildwrightError):
    """Base class for knowledge store failures."""

    path: str = ""


@dataclass
class VersionConflictError(KnowledgeError):
    """Raised when a write carries a stale expected version.

    Recoverable: the caller re-reads the document and retries.
    """

    current_version: int = 0
    expected_version: int = 0

    def __str__(self) -> str:
        return (
            f"Version conflict on '{self.path}': expected {self.expected_version}, "
            f"current {self.current_version}"
        )


@dataclass
class InvalidPathError(KnowledgeError):
    """Raised when a document path fails the structural check."""

    def __str__(self) -> str:
        return f"Invalid path '{self.path}': {self.message}"


@dataclass
class ContentTooLargeError(KnowledgeError):
    """Raised when a document exceeds the configured byte ceiling."""

    size_bytes: int = 0
    limit_bytes: int = 0

    def __str__(self) -> str:
        return f"Content for '{self.path}' is {self.size_bytes} bytes (limit {self.limit_bytes})"


# --- Services and providers ----------------------------------------------


@dataclass
class ServiceError(BuildwrightError):
    """Raised when a service operation fails."""

    service_name: str = ""
    operation: str = ""
    retryable: bool = False

    def __str__(self) -> str:
        base = super().__str__()
        retry_hint = " (retryable)" if self.retryable else " (non-retryable)"
        return f"[{self.service_name}.{self.operation}]{retry_hint}: {base}"


@dataclass
class ProviderError(ServiceError):
    """Raised when an external provider call fails.

    Server errors and rate limiting are retryable, other client errors are not.
    A missing status code means a transport failure (timeout, connection reset).
    """

    status_code: int | None = None

    def __post_init__(self) -> None:
        if self.status_code is not None:
            self.retryable = self.status_code == 429 or self.status_code >= 500


@dataclass
class CircuitOpenError(ServiceError):
    """Raised when a call is rejected by an open circuit breaker.

    Recoverable after the cooldown; callers back off instead of retrying.
    """

    breaker_name: str = ""
    retry_after_seconds: float = 0.0

    def __post_init__(self) -> None:
        self.service_name = self.breaker_name
        self.operation = "execute"
        self.retryable = False


@dataclass
class RateLimitExceededError(ServiceError):
    """Raised when a caller exceeds its request allowance."""

    identifier: str = ""
    retry_after_seconds: float = 0.0

    def __post_init__(self) -> None:
        self.service_name = "rate_limiter"


@dataclass
class AgentError(ServiceError):
    """Raised when an LLM agent operation fails."""

    agent_name: str = ""

    def __post_init__(self) -> None:
        self.service_name = "agent"

    def __str__(self) -> str:
        base = super().__str__()
        return f"[Agent: {self.agent_name}] {base}"


@dataclass
class ToolError(BuildwrightError):
    """Raised by a tool handler; reported back to the model as a tool error."""

    tool_name: str = ""


# --- Budget --------------------------------------------------------------


@dataclass
class BudgetExceededError(BuildwrightError):
    """Raised when a session-level budget would be exceeded.

    The caller should stop, not retry.
    """

    limit: float = 0.0
    used: float = 0.0


@dataclass
class AgentBudgetExceededError(BudgetExceededError):
    """Raised when an agent exhausts its call or token allowance."""

    agent_name: str = ""
    resource: str = "calls"

    def __str__(self) -> str:
        return (
            f"Agent '{self.agent_name}' exhausted its {self.resource} budget "
            f"({self.used:g}/{self.limit:g})"
        )


# --- Agent loop ----------------------------------------------------------


@dataclass
class AgentLoopDetectedError(BuildwrightError):
    """Raised when a tool loop hits its iteration ceiling."""

    agent_name: str = ""
    iterations: int = 0

    def __str__(self) -> str:
        return f"Agent '{self.agent_name}' still requesting tools after {self.iterations} iterations"


@dataclass
class SessionAbortedError(BuildwrightError):
    """Raised inside a session once its abort signal fires."""

    session_id: str = ""


# --- Orchestration -------------------------------------------------------


@dataclass
class PipelineError(BuildwrightError):
    """Raised when pipeline orchestration fails."""

    stage: str = ""
    session_id: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        return f"Pipeline error at phase '{self.stage}' (session: {self.session_id}): {base}"


@dataclass
class PlanCoverageIncompleteError(PipelineError):
    """Raised when the plan leaves requirements uncovered after all attempts."""

    missing_requirements: list[str] = field(default_factory=list)
    coverage_percent: int = 0


@dataclass
class VersionMismatchError(PipelineError):
    """Raised when a phase input changed after a dependent document was derived from it."""

    expected_version: int = 0
    actual_version: int = 0


@dataclass
class VerificationFailedError(PipelineError):
    """Raised when verification still fails after the fix loop is exhausted."""

    issues: list[str] = field(default_factory=list)


# --- Webhooks ------------------------------------------------------------


@dataclass
class WebhookSignatureError(BuildwrightError):
    """Raised when a callback signature is missing or invalid."""

    status_code: int = 401
