"""Unit tests for workflow webhook processing."""

import json

import pytest
from pydantic import SecretStr

from buildwright.core.config import WebhookConfig
from buildwright.events import EventStream, EventType
from buildwright.resilience import BudgetTracker
from buildwright.services.webhooks import (
    TaskRegistry,
    TaskStatus,
    WebhookProcessor,
    sign_payload,
    verify_signature,
)

SECRET = "s3cret"


def body(**overrides):
    payload = {"requestId": "req-1", "taskId": "task-1", "status": "success", "result": {"ok": True}}
    payload.update(overrides)
    return json.dumps(payload).encode()


@pytest.fixture
def registry():
    registry = TaskRegistry()
    registry.register("task-1", "req-1", session_id="session-1")
    registry.set_status("task-1", TaskStatus.IN_PROGRESS)
    return registry


@pytest.fixture
def budget():
    return BudgetTracker("session-1")


@pytest.fixture
def processor(registry, budget):
    return WebhookProcessor(
        registry,
        EventStream(),
        secret=SECRET,
        budget_lookup=lambda session_id: budget if session_id == "session-1" else None,
    )


class TestSignatures:
    """Tests for HMAC verification."""

    def test_prefixed_and_bare_signatures(self):
        """Test that both sha256= and bare hex signatures are accepted."""
        raw = body()
        signature = sign_payload(SECRET, raw)

        verify_signature(SECRET, raw, signature)
        verify_signature(SECRET, raw, f"sha256={signature.upper()}")

    def test_missing_secret_is_server_error(self, registry):
        """Test that an unconfigured secret answers 500."""
        processor = WebhookProcessor(registry, EventStream(), secret=None)

        assert processor.handle(body(), "sha256=abc").status_code == 500

    def test_processor_from_config(self, registry):
        """Test that the configured callback secret authenticates deliveries."""
        raw = body()
        configured = WebhookProcessor.from_config(WebhookConfig(secret=SecretStr(SECRET)), registry, EventStream())
        unconfigured = WebhookProcessor.from_config(WebhookConfig(), registry, EventStream())

        assert unconfigured.handle(raw, sign_payload(SECRET, raw)).status_code == 500
        assert configured.handle(raw, sign_payload(SECRET, raw)).status_code == 200

    @pytest.mark.parametrize("signature", [None, "", "sha256=deadbeef"])
    def test_bad_signatures_are_unauthorized(self, processor, signature):
        """Test that missing or wrong signatures answer 401."""
        response = processor.handle(body(), signature)

        assert response.status_code == 401


class TestWebhookProcessing:
    """Tests for applying callbacks."""

    def _send(self, processor, raw):
        return processor.handle(raw, sign_payload(SECRET, raw))

    def test_success_completes_task_and_charges_budget(self, processor, registry, budget):
        """Test that a success callback completes the task once."""
        events = []
        processor.events.subscribe(events.append)

        response = self._send(processor, body(costUsd=0.25))

        assert response.status_code == 200
        assert response.body == {"task_id": "task-1", "status": "completed"}
        task = registry.get("task-1")
        assert task.status == TaskStatus.COMPLETED
        assert task.result == {"ok": True}
        assert budget.spent_usd == pytest.approx(0.25)
        assert [e.type for e in events] == [EventType.TASK_COMPLETED]
        assert events[0].session_id == "session-1"

    def test_duplicate_delivery_is_idempotent(self, processor, budget):
        """Test that a repeated callback changes nothing."""
        raw = body(costUsd=0.25)
        self._send(processor, raw)

        response = self._send(processor, raw)

        assert response.status_code == 200
        assert response.body["duplicate"] is True
        assert budget.spent_usd == pytest.approx(0.25)

    def test_error_callback_fails_task(self, processor, registry):
        """Test that an error callback marks the task failed."""
        response = self._send(processor, body(status="error", error="worker crashed", result=None))

        assert response.body["status"] == "failed"
        assert registry.get("task-1").error == "worker crashed"

    def test_malformed_payload(self, processor):
        """Test that an invalid body answers 400."""
        raw = json.dumps({"taskId": "task-1", "status": "maybe"}).encode()

        assert self._send(processor, raw).status_code == 400

    def test_unknown_task(self, processor):
        """Test that an unknown task answers 404."""
        assert self._send(processor, body(taskId="task-404")).status_code == 404

    def test_mismatched_request_id(self, processor, registry):
        """Test that a callback for another request is rejected."""
        response = self._send(processor, body(requestId="req-2"))

        assert response.status_code == 400
        assert registry.get("task-1").status == TaskStatus.IN_PROGRESS
