"""Unit tests for agents and the tool-calling loop."""

import time

import pytest

from buildwright.agents import (
    ArchitectAgent,
    BuilderAgent,
    DeployerAgent,
    IntakeAgent,
    PromptTemplate,
    ResearchAgent,
    ToolName,
    ToolResultBlock,
    VerifierAgent,
)
from buildwright.agents.base import AgentTask, format_document, format_feedback
from buildwright.core.config import AgentLimit
from buildwright.core.exceptions import ProviderError, SessionAbortedError
from buildwright.events import EventType
from buildwright.knowledge import REQUIREMENTS_PATH
from buildwright.models.session import AgentStatus
from buildwright.resilience import BudgetTracker, CircuitBreakerRegistry, CircuitState

from tests.support import ScriptedModel, reply, todo_app_model, tool_call


class TestPromptTemplate:
    """Tests for prompt templates."""

    def test_render_user(self):
        """Test that template variables are substituted in the user prompt."""
        template = PromptTemplate(
            template_id="test",
            version="1.0.0",
            system_prompt="You are a helpful assistant.",
            user_prompt_template="Process: {input}",
        )
        assert template.render_system() == "You are a helpful assistant."
        assert template.render_user(input="test data") == "Process: test data"

    def test_render_user_with_format_instructions(self):
        """Test that output format instructions are appended when provided."""
        template = PromptTemplate(
            template_id="test",
            version="1.0.0",
            system_prompt="System",
            user_prompt_template="Process: {input}",
            output_format_instructions="Return JSON.",
        )
        assert template.render_user(input="test").endswith("Return JSON.")

    def test_get_hash(self):
        """Test deterministic hash generation.

        The hash changes when the template version changes.
        """
        template = PromptTemplate(
            template_id="test", version="1.0.0", system_prompt="System", user_prompt_template="User {var}"
        )
        bumped = PromptTemplate(
            template_id="test", version="1.0.1", system_prompt="System", user_prompt_template="User {var}"
        )
        assert template.get_hash() == template.get_hash()
        assert len(template.get_hash()) == 16
        assert template.get_hash() != bumped.get_hash()


class TestPromptHelpers:
    """Tests for prompt formatting helpers."""

    def test_format_document(self):
        """Test rendering of missing, text and structured content."""
        assert format_document(None) == "(none)"
        assert format_document("plain") == "plain"
        assert '"a": 1' in format_document({"a": 1})

    def test_format_feedback(self):
        """Test that instructions lead and feedback follows as bullets."""
        task = AgentTask(feedback=["REQ-003 is not covered"], instructions="Revise the plan")

        rendered = format_feedback(task, heading="Fix these")
        assert rendered.startswith("\n## Fix these\n- Revise the plan\n- REQ-003")
        assert format_feedback(AgentTask()) == ""


class TestAgentCatalogue:
    """Tests for the phase agents' declarations."""

    def test_agent_names(self):
        """Test that every phase agent carries a distinct name."""
        names = [a.NAME for a in (IntakeAgent, ResearchAgent, ArchitectAgent, BuilderAgent, VerifierAgent, DeployerAgent)]
        assert names == ["intake", "research", "architect", "builder", "verifier", "deployer"]

    def test_tool_sets(self):
        """Test that each agent only carries the tools of its phase."""
        assert ToolName.SUBMIT_REQUIREMENTS in IntakeAgent.TOOLS
        assert ToolName.WRITE_FILE not in IntakeAgent.TOOLS
        assert ToolName.DEPLOY in DeployerAgent.TOOLS
        assert ToolName.WRITE_KNOWLEDGE not in DeployerAgent.TOOLS
        assert ToolName.SUBMIT_VERIFICATION in VerifierAgent.TOOLS


@pytest.mark.asyncio
class TestAgentLoop:
    """Tests for the bounded tool-calling loop."""

    async def test_intake_produces_requirements(self, make_context):
        """Test a successful intake run end to end."""
        context = make_context()
        model = todo_app_model()
        agent = IntakeAgent(model)

        result = await agent.run(AgentTask(), context)

        assert result.success
        assert result.iterations == 3
        assert result.usage.total_tokens == 2 * 120 + 60
        assert result.prompt_hash == agent.get_prompt_template().get_hash()
        document = context.knowledge.read(REQUIREMENTS_PATH)
        assert len(document.content["requirements"]) == 5
        state = context.agent_state("intake")
        assert state.status == AgentStatus.COMPLETED
        assert state.progress == 100
        assert state.confidence == pytest.approx(0.885)
        assert state.calls_made == 3

    async def test_tool_results_are_fed_back(self, make_context):
        """Test that each tool outcome is appended to the transcript."""
        context = make_context()
        model = todo_app_model()

        await IntakeAgent(model).run(AgentTask(), context)

        second_call = model.transcripts["intake"][1]
        assert second_call[1].role == "assistant"
        result_block = second_call[2].content[0]
        assert isinstance(result_block, ToolResultBlock)
        assert '"should_ask_user": false' in result_block.content

    async def test_missing_output_is_retryable_failure(self, make_context):
        """Test that finishing without the required document fails the run."""
        context = make_context()
        model = ScriptedModel({"intake": [reply("I am done")]})

        result = await IntakeAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "MissingOutput"
        assert result.retryable
        assert context.agent_state("intake").status == AgentStatus.ERROR

    async def test_loop_detection(self, make_context):
        """Test that an agent still calling tools at the ceiling is stopped."""
        context = make_context(max_iterations=3)
        model = ScriptedModel({"builder": [tool_call("emit_progress", progress=i) for i in range(10)]})

        result = await BuilderAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "AgentLoopDetectedError"
        assert not result.retryable
        assert model.calls["builder"] == 3
        errors = [e for e in context.events.history(context.session_id) if e.type == EventType.AGENT_ERROR]
        assert errors[-1].payload["error_type"] == "AgentLoopDetectedError"

    async def test_budget_exhaustion_is_not_retryable(self, make_context, session):
        """Test that running out of calls ends the run without retry."""
        budget = BudgetTracker(session.session_id, {"builder": AgentLimit(max_calls=1)})
        context = make_context(budget=budget)
        model = ScriptedModel({"builder": [tool_call("write_file", path="a.txt", content="a"), reply()]})

        result = await BuilderAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "AgentBudgetExceededError"
        assert not result.retryable
        assert model.calls["builder"] == 1

    async def test_budget_warning_event(self, make_context, session):
        """Test that crossing 80 percent of the call allowance emits a warning."""
        budget = BudgetTracker(session.session_id, {"builder": AgentLimit(max_calls=5)})
        context = make_context(budget=budget)
        model = ScriptedModel(
            {"builder": [tool_call("write_file", path=f"f{i}.txt", content="x") for i in range(4)] + [reply()]}
        )

        result = await BuilderAgent(model).run(AgentTask(), context)

        assert result.success
        warnings = [e for e in context.events.history(context.session_id) if e.type == EventType.BUDGET_WARNING]
        assert len(warnings) == 1
        assert warnings[0].payload["calls"] == 4

    async def test_transient_provider_error_is_retried(self, make_context):
        """Test that a 503 from the provider is retried transparently."""
        context = make_context()
        model = todo_app_model()
        model.scripts["intake"].insert(
            0, ProviderError(message="overloaded", service_name="scripted", operation="complete", status_code=503)
        )

        result = await IntakeAgent(model).run(AgentTask(), context)

        assert result.success
        assert model.calls["intake"] == 4
        assert context.budget.usage("intake").calls == 3

    async def test_permanent_provider_error_fails_run(self, make_context):
        """Test that a 400 from the provider ends the run without a phase retry."""
        context = make_context()
        model = ScriptedModel(
            {"intake": [ProviderError(message="bad request", service_name="scripted", operation="complete", status_code=400)]}
        )

        result = await IntakeAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "ProviderError"
        assert not result.retryable
        assert model.calls["intake"] == 1

    async def test_open_circuit_reports_cooldown(self, make_context):
        """Test that an open provider circuit fails the run with the breaker's remaining cooldown."""
        breakers = CircuitBreakerRegistry(reset_timeout=30.0)
        breaker = breakers.get("llm:scripted")
        breaker.state = CircuitState.OPEN
        breaker.last_failure = time.time()
        context = make_context(breakers=breakers)
        model = todo_app_model()

        result = await IntakeAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "CircuitOpenError"
        assert result.retryable
        assert 25.0 < result.retry_after_seconds <= 30.0
        assert model.calls["intake"] == 0

    async def test_malformed_verification_report_is_missing_output(self, make_context):
        """Test that a report written as free text does not count as a verdict."""
        context = make_context()
        model = ScriptedModel(
            {"verifier": [tool_call("write_knowledge", path="/verification/report", content="Looks good to me"), reply()]}
        )

        result = await VerifierAgent(model).run(AgentTask(), context)

        assert not result.success
        assert result.error_type == "MissingOutput"
        assert result.retryable
        assert "malformed /verification/report" in result.error

    async def test_tool_error_does_not_end_loop(self, make_context):
        """Test that a failing tool is reported to the model, which can recover."""
        context = make_context()
        model = ScriptedModel(
            {
                "builder": [
                    tool_call("write_file", path="../escape.txt", content="x"),
                    tool_call("write_file", path="index.html", content="<html></html>"),
                    reply(),
                ]
            }
        )

        result = await BuilderAgent(model).run(AgentTask(), context)

        assert result.success
        failed = model.transcripts["builder"][1][-1].content[0]
        assert failed.is_error
        assert context.knowledge.list_paths("/files") == ["/files/index.html"]

    async def test_abort_propagates(self, make_context):
        """Test that an aborted session stops the agent with SessionAbortedError."""
        context = make_context()
        context.abort.abort("stop")

        with pytest.raises(SessionAbortedError):
            await IntakeAgent(todo_app_model()).run(AgentTask(), context)

    async def test_feedback_reaches_prompt(self, make_context):
        """Test that orchestrator feedback is rendered into the user prompt."""
        context = make_context()
        model = ScriptedModel({"builder": [tool_call("write_file", path="a.js", content="1"), reply()]})

        await BuilderAgent(model).run(AgentTask(attempt=2, feedback=["[major] a.js: crashes on load"]), context)

        first_prompt = model.transcripts["builder"][0][0].content
        assert "Verification issues to fix" in first_prompt
        assert "crashes on load" in first_prompt
