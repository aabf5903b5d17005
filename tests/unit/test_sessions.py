"""Unit tests for the session manager."""

import asyncio

import pytest

from buildwright.core.config import SessionConfig
from buildwright.core.exceptions import PipelineError, ProviderError, RateLimitExceededError
from buildwright.events import EventType
from buildwright.models.session import GenerationOptions, Phase
from buildwright.orchestration import Orchestrator, SessionManager
from buildwright.resilience import SlidingWindowRateLimiter
from buildwright.services.deployment import LocalDirectoryDeployer
from buildwright.storage import InMemoryStorageBackend

from tests.support import TODO_FILES, ScriptedModel, reply, todo_app_model, tool_call


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_manager(config, model, session_config=None, **kwargs):
    orchestrator = Orchestrator(model, config=config, deployer=LocalDirectoryDeployer(InMemoryStorageBackend()))
    return SessionManager(orchestrator, session_config, **kwargs)


def waiting_model():
    """A model whose intake asks a question and then finishes normally."""
    model = todo_app_model()
    question = tool_call("ask_user", question="Web or mobile?", question_type="choice", options=["Web", "Mobile"])
    model.scripts["intake"].insert(0, question)
    return model


async def next_question(manager, session_id):
    async for event in manager.feed(session_id):
        if event.type == EventType.USER_INPUT_REQUIRED:
            return event
    raise AssertionError("session ended without asking")


@pytest.mark.asyncio
class TestSessionLifecycle:
    """Tests for starting, waiting and querying sessions."""

    async def test_start_and_wait(self, config):
        """Test that a started session runs in the background to completion."""
        manager = make_manager(config, todo_app_model())

        session = manager.start("Build a todo app", "Todo App")
        assert manager.is_running(session.session_id)
        assert manager.active_sessions() == [session.session_id]

        result = await manager.wait(session.session_id)

        assert result.success
        assert result.files == TODO_FILES
        assert not manager.is_running(session.session_id)
        assert manager.get(session.session_id) is session
        assert manager.progress(session.session_id).percentage == 100

    async def test_rate_limit_per_user(self, config):
        """Test that generation starts are limited per user."""
        manager = make_manager(config, todo_app_model(), rate_limiter=SlidingWindowRateLimiter(1, 60.0))

        first = manager.start("Build a todo app", "Todo App", GenerationOptions(user_id="alice"))
        with pytest.raises(RateLimitExceededError) as exc_info:
            manager.start("Build another", "Other", GenerationOptions(user_id="alice"))

        assert exc_info.value.identifier == "alice"
        assert exc_info.value.retry_after_seconds > 0
        await manager.shutdown()
        assert not manager.is_running(first.session_id)

    async def test_answer_reaches_agent(self, config):
        """Test that a submitted answer resumes the waiting agent."""
        model = waiting_model()
        manager = make_manager(config, model)
        session = manager.start("Build a todo app", "Todo App")

        question = await next_question(manager, session.session_id)
        assert question.payload["options"] == ["Web", "Mobile"]
        assert not manager.submit_answer(session.session_id, "not-a-question", "Web")
        assert manager.submit_answer(session.session_id, question.payload["question_id"], "Web")
        assert not manager.submit_answer(session.session_id, question.payload["question_id"], "Mobile")

        result = await manager.wait(session.session_id)

        assert result.success
        answer_block = model.transcripts["intake"][1][-1].content[0]
        assert '"response": "Web"' in answer_block.content


@pytest.mark.asyncio
class TestSessionControl:
    """Tests for abort, resume, eviction and shutdown."""

    async def test_abort_running_session(self, config):
        """Test that aborting a waiting session ends it as aborted."""
        manager = make_manager(config, waiting_model())
        session = manager.start("Build a todo app", "Todo App")
        await next_question(manager, session.session_id)

        assert manager.abort(session.session_id, "changed my mind")
        result = await manager.wait(session.session_id)

        assert result.status == Phase.ABORTED
        assert not manager.abort(session.session_id)
        assert not manager.abort("unknown")

    async def test_resume_after_failure(self, config):
        """Test that a failed session resumes from its latest checkpoint."""
        config.orchestrator.max_phase_retries = 0
        model = todo_app_model()
        model.scripts["builder"] = [
            ProviderError(message="bad request", service_name="scripted", operation="complete", status_code=400)
        ]
        manager = make_manager(config, model)
        session = manager.start("Build a todo app", "Todo App")
        failed = await manager.wait(session.session_id)
        assert failed.failed_phase == Phase.BUILDING

        model.add("builder", *[tool_call("write_file", path=p, content=c) for p, c in TODO_FILES.items()], reply())
        resumed = await manager.resume(session.session_id)
        with pytest.raises(PipelineError):
            await manager.resume(session.session_id)
        result = await manager.wait(resumed.session_id)

        assert result.success
        assert model.calls["intake"] == 3

    async def test_resume_without_checkpoint(self, config):
        """Test that resuming an unknown session is rejected."""
        manager = make_manager(config, ScriptedModel())

        with pytest.raises(PipelineError):
            await manager.resume("missing")

    async def test_finished_sessions_evicted_after_grace(self, config):
        """Test that finished sessions are dropped after the grace period."""
        clock = FakeClock()
        manager = make_manager(
            config,
            todo_app_model(),
            session_config=SessionConfig(completion_grace_seconds=10, max_age_seconds=600),
            clock=clock,
        )
        session = manager.start("Build a todo app", "Todo App")
        await manager.wait(session.session_id)

        clock.now += 5
        assert manager.evict_expired() == []
        clock.now += 5
        assert manager.evict_expired() == [session.session_id]
        assert manager.get(session.session_id) is None
        assert manager.orchestrator.events.history(session.session_id) == []

    async def test_overdue_session_is_aborted_and_evicted(self, config):
        """Test that a session past its maximum age is aborted, then dropped."""
        clock = FakeClock()
        manager = make_manager(
            config,
            waiting_model(),
            session_config=SessionConfig(completion_grace_seconds=10, max_age_seconds=60),
            clock=clock,
        )
        session = manager.start("Build a todo app", "Todo App")
        await next_question(manager, session.session_id)

        clock.now += 60
        assert manager.evict_expired() == []
        result = await manager.wait(session.session_id)

        assert result.status == Phase.ABORTED
        assert manager.get(session.session_id) is None

    async def test_finished_session_evicted_at_max_age_before_grace(self, config):
        """Test that maximum age applies to finished sessions still inside their grace period."""
        clock = FakeClock()
        manager = make_manager(
            config,
            waiting_model(),
            session_config=SessionConfig(completion_grace_seconds=300, max_age_seconds=600),
            clock=clock,
        )
        session = manager.start("Build a todo app", "Todo App")
        question = await next_question(manager, session.session_id)

        clock.now += 590
        manager.submit_answer(session.session_id, question.payload["question_id"], "Web")
        assert (await manager.wait(session.session_id)).success

        clock.now += 5
        assert manager.evict_expired() == []
        clock.now += 6
        assert manager.evict_expired() == [session.session_id]
        assert manager.get(session.session_id) is None

    async def test_periodic_sweep_evicts_without_new_starts(self, config):
        """Test that the background sweep evicts sessions when nothing else is started."""
        clock = FakeClock()
        manager = make_manager(
            config,
            todo_app_model(),
            session_config=SessionConfig(completion_grace_seconds=10, max_age_seconds=600, sweep_interval_seconds=0.01),
            clock=clock,
        )
        session = manager.start("Build a todo app", "Todo App")
        await manager.wait(session.session_id)

        clock.now += 10
        for _ in range(100):
            if manager.get(session.session_id) is None:
                break
            await asyncio.sleep(0.01)

        assert manager.get(session.session_id) is None
        await manager.shutdown()

    async def test_shutdown_aborts_running_sessions(self, config):
        """Test that shutdown stops every running session."""
        manager = make_manager(config, waiting_model())
        session = manager.start("Build a todo app", "Todo App")
        await next_question(manager, session.session_id)

        await manager.shutdown()

        assert manager.active_sessions() == []
        assert manager.get(session.session_id).current_phase == Phase.ABORTED
