"""
Webhook Service.

Processes completion callbacks from an external workflow engine. Callbacks
are authenticated with an HMAC-SHA256 signature over the raw body and are
idempotent: a delivery for a task that is no longer in progress succeeds
without side effects.
"""

from __future__ import annotations

import hashlib
import hmac
import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ...core.config import WebhookConfig
from ...core.exceptions import WebhookSignatureError
from ...core.logging import get_logger
from ...core.types import utcnow
from ...events import EventStream, EventType
from ...resilience import BudgetTracker

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


class TaskStatus(str, Enum):
    """Lifecycle of a task delegated to the workflow engine."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WorkflowTask(BaseModel):
    """A task dispatched to the workflow engine."""

    task_id: str
    request_id: str
    session_id: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: str | None = None
    cost_usd: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WebhookPayload(BaseModel):
    """Callback body sent by the workflow engine."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId", min_length=1)
    task_id: str = Field(alias="taskId", min_length=1)
    status: Literal["success", "error"]
    result: Any = None
    error: str | None = None
    cost_usd: float | None = Field(default=None, alias="costUsd", ge=0.0)


class WebhookResponse(BaseModel):
    """What the HTTP layer should answer."""

    status_code: int
    body: dict[str, Any] = Field(default_factory=dict)


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 signature of ``body``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    """Check a callback signature.

    Raises:
        WebhookSignatureError: 500 without a configured secret, 401 for a
            missing or wrong signature.
    """
    if not secret:
        raise WebhookSignatureError(message="webhook secret not configured", status_code=500)
    if not signature:
        raise WebhookSignatureError(message="missing signature", status_code=401)
    provided = signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX) :]
    if not hmac.compare_digest(provided.lower(), sign_payload(secret, body)):
        raise WebhookSignatureError(message="invalid signature", status_code=401)


class TaskRegistry:
    """In-memory registry of delegated tasks."""

    def __init__(self) -> None:
        self._tasks: dict[str, WorkflowTask] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, request_id: str, session_id: str | None = None) -> WorkflowTask:
        task = WorkflowTask(task_id=task_id, request_id=request_id, session_id=session_id)
        with self._lock:
            self._tasks[task_id] = task
        return task

    def get(self, task_id: str) -> WorkflowTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    def set_status(self, task_id: str, status: TaskStatus) -> WorkflowTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None:
                task.status = status
                task.updated_at = utcnow()
            return task

    def complete(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Any = None,
        error: str | None = None,
        cost_usd: float = 0.0,
    ) -> bool:
        """Move an in-progress task to a terminal status.

        Returns:
            bool: False if the task was not in progress (nothing changed).
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.IN_PROGRESS:
                return False
            task.status = status
            task.result = result
            task.error = error
            task.cost_usd = cost_usd
            task.updated_at = utcnow()
            return True


class WebhookProcessor:
    """Authenticates and applies workflow callbacks."""

    def __init__(
        self,
        registry: TaskRegistry,
        events: EventStream,
        *,
        secret: str | None,
        budget_lookup: Callable[[str], BudgetTracker | None] | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            registry: Registry holding the delegated tasks.
            events: Stream receiving task events.
            secret: Shared HMAC secret.
            budget_lookup: Resolves a session id to its budget so reported
                costs can be charged.
        """
        self.registry = registry
        self.events = events
        self.secret = secret
        self.budget_lookup = budget_lookup

    @classmethod
    def from_config(
        cls,
        config: WebhookConfig,
        registry: TaskRegistry,
        events: EventStream,
        budget_lookup: Callable[[str], BudgetTracker | None] | None = None,
    ) -> WebhookProcessor:
        """Build a processor using the configured callback secret."""
        secret = config.secret.get_secret_value() if config.secret else None
        return cls(registry, events, secret=secret, budget_lookup=budget_lookup)

    def handle(self, body: bytes, signature: str | None) -> WebhookResponse:
        try:
            verify_signature(self.secret, body, signature)
        except WebhookSignatureError as e:
            logger.warning("Webhook rejected", reason=e.message, status_code=e.status_code)
            return WebhookResponse(status_code=e.status_code, body={"error": e.message})

        try:
            payload = WebhookPayload.model_validate_json(body)
        except PydanticValidationError as e:
            return WebhookResponse(status_code=400, body={"error": "invalid payload", "details": e.errors(include_url=False)})

        task = self.registry.get(payload.task_id)
        if task is None:
            return WebhookResponse(status_code=404, body={"error": f"unknown task {payload.task_id}"})
        if task.request_id != payload.request_id:
            return WebhookResponse(status_code=400, body={"error": "request id does not match task"})

        status = TaskStatus.COMPLETED if payload.status == "success" else TaskStatus.FAILED
        cost = payload.cost_usd or 0.0
        applied = self.registry.complete(
            payload.task_id,
            status,
            result=payload.result,
            error=payload.error,
            cost_usd=cost,
        )
        if not applied:
            logger.info("Duplicate webhook ignored", task_id=task.task_id, status=task.status.value)
            return WebhookResponse(
                status_code=200,
                body={"task_id": task.task_id, "status": task.status.value, "duplicate": True},
            )

        self._apply_side_effects(task, status, payload, cost)
        return WebhookResponse(status_code=200, body={"task_id": task.task_id, "status": status.value})

    def _apply_side_effects(self, task: WorkflowTask, status: TaskStatus, payload: WebhookPayload, cost: float) -> None:
        session_id = task.session_id or task.request_id
        if cost and task.session_id and self.budget_lookup is not None:
            budget = self.budget_lookup(task.session_id)
            if budget is not None:
                budget.charge(cost)
        event_type = EventType.TASK_COMPLETED if status == TaskStatus.COMPLETED else EventType.TASK_FAILED
        self.events.emit(
            event_type,
            session_id,
            {
                "task_id": task.task_id,
                "request_id": task.request_id,
                "result": payload.result,
                "error": payload.error,
                "cost_usd": cost,
            },
        )
        logger.info("Webhook applied", task_id=task.task_id, status=status.value, cost_usd=cost)
