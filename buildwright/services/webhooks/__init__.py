"""Workflow engine callback processing."""

from .service import (
    TaskRegistry,
    TaskStatus,
    WebhookPayload,
    WebhookProcessor,
    WebhookResponse,
    WorkflowTask,
    sign_payload,
    verify_signature,
)

__all__ = [
    "TaskRegistry",
    "TaskStatus",
    "WebhookPayload",
    "WebhookProcessor",
    "WebhookResponse",
    "WorkflowTask",
    "sign_payload",
    "verify_signature",
]
