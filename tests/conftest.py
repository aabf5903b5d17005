"""Test configuration for Buildwright."""

import tempfile
from pathlib import Path

import pytest

from buildwright.core.cancellation import AbortSignal
from buildwright.core.config import Config
from buildwright.events import EventStream
from buildwright.knowledge import KnowledgeStore
from buildwright.models.session import GenerationSession
from buildwright.orchestration import ResponseHandler
from buildwright.resilience import BudgetTracker, CircuitBreakerRegistry, RetryPolicy


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests.

    Yields:
        Path: A Path object pointing to the temporary directory.
            The directory is automatically cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage(temp_dir):
    """Create a storage backend for testing.

    Args:
        temp_dir: Pytest fixture providing a temporary directory path.

    Returns:
        LocalStorageBackend: A local storage backend rooted in the temporary directory.
    """
    from buildwright.storage import LocalStorageBackend

    return LocalStorageBackend(temp_dir)


@pytest.fixture
def config():
    """Configuration tuned for fast, deterministic tests.

    Backoff delays are zeroed so retried calls do not sleep.
    """
    cfg = Config()
    cfg.resilience.base_delay_seconds = 0.0
    cfg.resilience.max_delay_seconds = 0.0
    cfg.orchestrator.ask_user_timeout_seconds = 5.0
    return cfg


@pytest.fixture
def events():
    return EventStream()


@pytest.fixture
def session():
    return GenerationSession(prompt="Build a todo app", project_name="Todo App")


@pytest.fixture
def make_context(session, events):
    """Factory for an AgentContext wired to in-memory services.

    Returns:
        Callable: Builds a context; keyword arguments override fields.
    """
    from buildwright.agents import AgentContext

    def _make(**overrides):
        values = dict(
            session=session,
            knowledge=KnowledgeStore(session.session_id, events),
            events=events,
            budget=BudgetTracker(session.session_id),
            responses=ResponseHandler(events, default_timeout=5.0),
            breakers=CircuitBreakerRegistry(),
            abort=AbortSignal(session.session_id),
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
        )
        values.update(overrides)
        return AgentContext(**values)

    return _make
