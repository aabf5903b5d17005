"""
Base agent abstraction.

Provides the core Agent interface: a versioned prompt template, a fixed tool
set and a bounded tool-calling loop over a language model with budget
enforcement, circuit breaking, retries and cancellation.
"""

from __future__ import annotations

import hashlib
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from ..core.exceptions import (
    AgentLoopDetectedError,
    BudgetExceededError,
    BuildwrightError,
    CircuitOpenError,
    ServiceError,
    SessionAbortedError,
)
from ..core.logging import get_logger, log_context
from ..core.types import TokenUsage, utcnow
from ..events import EventType
from ..models.session import AgentStatus
from ..resilience import guarded_call
from .context import AgentContext
from .llm import LanguageModel, LLMResponse, Message, ToolResultBlock, ToolSchema
from .router import ToolRouter
from .tools import ToolName, tool_schemas

logger = get_logger(__name__)

KNOWLEDGE_TOOLS = frozenset(
    {
        ToolName.READ_KNOWLEDGE,
        ToolName.WRITE_KNOWLEDGE,
        ToolName.SEARCH_KNOWLEDGE,
        ToolName.LIST_KNOWLEDGE,
        ToolName.EMIT_PROGRESS,
    }
)


class AgentTask(BaseModel):
    """What the orchestrator asks of an agent for one phase run."""

    attempt: int = Field(default=1, ge=1)
    feedback: list[str] = Field(default_factory=list, description="Coverage gaps or verification issues")
    instructions: str = Field(default="")


class AgentResult(BaseModel):
    """Outcome of an agent run."""

    success: bool = Field(description="Whether the run succeeded")
    agent: str
    summary: str = Field(default="")
    error: str | None = Field(default=None)
    error_type: str | None = Field(default=None)
    retryable: bool = Field(default=False, description="Whether rerunning the phase may help")
    retry_after_seconds: float = Field(default=0.0, ge=0.0, description="Back-off before rerunning the phase")

    # Metrics
    iterations: int = Field(default=0)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: float = Field(default=0.0)

    # Provenance
    model_used: str = Field(default="")
    prompt_hash: str = Field(default="")
    timestamp: datetime = Field(default_factory=utcnow)


@dataclass
class PromptTemplate:
    """A versioned prompt template."""

    template_id: str
    version: str
    system_prompt: str
    user_prompt_template: str
    output_format_instructions: str = ""

    def render_system(self) -> str:
        return self.system_prompt

    def render_user(self, **kwargs: Any) -> str:
        """Render the user prompt with variables.

        Args:
            **kwargs: Template variables to substitute in the user prompt.

        Returns:
            str: The rendered prompt with output instructions appended if any.
        """
        prompt = self.user_prompt_template.format(**kwargs)
        if self.output_format_instructions:
            prompt += f"\n\n{self.output_format_instructions}"
        return prompt

    def get_hash(self) -> str:
        """Deterministic 16-character hash of the template, for provenance."""
        content = f"{self.template_id}:{self.version}:{self.system_prompt}:{self.user_prompt_template}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]


def format_document(content: Any) -> str:
    """Render knowledge content for inclusion in a prompt."""
    if content is None:
        return "(none)"
    if isinstance(content, str):
        return content
    return json.dumps(content, indent=2, default=str)


def format_feedback(task: AgentTask, heading: str = "Notes from the previous attempt") -> str:
    """Render orchestrator feedback as a trailing prompt section."""
    lines = list(task.feedback)
    if task.instructions:
        lines.insert(0, task.instructions)
    if not lines:
        return ""
    bullets = "\n".join(f"- {line}" for line in lines)
    return f"\n## {heading}\n{bullets}\n"


class Agent(ABC):
    """Base class for all phase agents.

    Subclasses declare ``NAME``, ``DESCRIPTION`` and ``TOOLS`` and provide a
    prompt template. ``run`` never raises for ordinary failures: loop-level
    errors come back as ``AgentResult(success=False)``. Only a session abort
    propagates.
    """

    NAME: ClassVar[str]
    DESCRIPTION: ClassVar[str] = ""
    TOOLS: ClassVar[frozenset[ToolName]] = KNOWLEDGE_TOOLS
    REQUIRED_OUTPUTS: ClassVar[tuple[str, ...]] = ()

    def __init__(self, model: LanguageModel, router: ToolRouter | None = None) -> None:
        """Initialize the agent.

        Args:
            model: Language model adapter used for every completion.
            router: Tool router; a fresh one is created if not provided.
        """
        self.model = model
        self.router = router or ToolRouter()

    @property
    def name(self) -> str:
        return self.NAME

    @abstractmethod
    def get_prompt_template(self) -> PromptTemplate:
        """Return the versioned prompt template for this agent."""
        ...

    @abstractmethod
    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        """Build the template variables for the user prompt.

        Agents typically read the knowledge documents produced by earlier
        phases here.
        """
        ...

    def validate_output(self, context: AgentContext) -> list[str]:
        """Check that the run left its outputs in the knowledge store.

        Returns:
            list[str]: Problems found (empty if valid).
        """
        return [f"missing output {path}" for path in self.REQUIRED_OUTPUTS if context.knowledge.read(path) is None]

    def tool_schemas(self) -> list[ToolSchema]:
        return tool_schemas(self.TOOLS)

    async def _call_model(
        self,
        system_prompt: str,
        tools: list[ToolSchema],
        transcript: list[Message],
        context: AgentContext,
    ) -> LLMResponse:
        """One budget-checked, breaker-guarded, retried model call."""
        context.budget.check(self.name)
        breaker = context.breakers.get(f"llm:{self.model.provider}")
        model_name = context.budget.model_for(self.name)

        response = await guarded_call(
            breaker,
            lambda: context.abort.guard(
                self.model.complete(
                    system_prompt,
                    tools,
                    transcript,
                    model=model_name,
                    max_tokens=context.max_tokens_override,
                    temperature=context.temperature_override,
                )
            ),
            context.retry_policy,
            operation=f"{self.name}.complete",
        )

        totals = context.budget.record(self.name, response.usage, response.model or model_name)
        state = context.agent_state(self.name)
        state.calls_made = totals.calls
        state.tokens_used = totals.total_tokens
        if context.budget.nearing_limit(self.name):
            limit = context.budget.limit_for(self.name)
            context.emit(
                EventType.BUDGET_WARNING,
                {"calls": totals.calls, "max_calls": limit.max_calls, "tokens": totals.total_tokens},
                agent=self.name,
            )
        return response

    async def run_loop(self, task: AgentTask, context: AgentContext) -> tuple[str, int, TokenUsage]:
        """Drive the tool-calling loop until the model ends its turn.

        Returns:
            tuple: Final assistant text, iterations used and total token usage.

        Raises:
            AgentBudgetExceededError: The agent ran out of calls or tokens.
            AgentLoopDetectedError: The iteration ceiling was reached.
            ProviderError: The model call failed after retries.
            CircuitOpenError: The provider circuit is open.
            SessionAbortedError: The session was aborted.
        """
        template = self.get_prompt_template()
        system_prompt = template.render_system()
        transcript = [Message(role="user", content=template.render_user(**self.prepare_input(task, context)))]
        tools = self.tool_schemas()
        usage = TokenUsage()
        last_text = ""

        for iteration in range(1, context.max_iterations + 1):
            context.abort.raise_if_aborted()
            response = await self._call_model(system_prompt, tools, transcript, context)
            usage = usage + response.usage

            if response.text:
                last_text = response.text
                context.agent_state(self.name).last_message = last_text
                context.emit(EventType.AGENT_MESSAGE, {"text": last_text}, agent=self.name)

            calls = response.tool_uses
            if not calls:
                return last_text, iteration, usage

            transcript.append(Message(role="assistant", content=response.content))
            results = []
            for call in calls:
                result = await self.router.dispatch(call, self.name, self.TOOLS, context)
                results.append(
                    ToolResultBlock(tool_use_id=call.id, content=result.to_content(), is_error=not result.success)
                )
            transcript.append(Message(role="user", content=results))

        raise AgentLoopDetectedError(
            message=f"{self.name} did not finish within {context.max_iterations} iterations",
            agent_name=self.name,
            iterations=context.max_iterations,
        )

    async def run(self, task: AgentTask, context: AgentContext) -> AgentResult:
        """Run the agent for one phase.

        Args:
            task: Attempt number and feedback from the orchestrator.
            context: Session services.

        Returns:
            AgentResult: Success, or a structured failure.

        Raises:
            SessionAbortedError: If the session is aborted mid-run.
        """
        with log_context(agent=self.name):
            return await self._run(task, context)

    async def _run(self, task: AgentTask, context: AgentContext) -> AgentResult:
        start_time = time.perf_counter()
        template = self.get_prompt_template()
        state = context.agent_state(self.name)
        state.status = AgentStatus.ACTIVE
        state.progress = 0
        state.error = None

        logger.info(
            "Agent run started",
            agent=self.name,
            session_id=context.session_id,
            attempt=task.attempt,
            prompt_hash=template.get_hash(),
        )
        context.emit(EventType.AGENT_STARTED, {"attempt": task.attempt}, agent=self.name)

        def _result(success: bool, **kwargs: Any) -> AgentResult:
            return AgentResult(
                success=success,
                agent=self.name,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                model_used=context.budget.model_for(self.name),
                prompt_hash=template.get_hash(),
                **kwargs,
            )

        try:
            summary, iterations, usage = await self.run_loop(task, context)
        except SessionAbortedError:
            state.status = AgentStatus.ERROR
            state.error = "aborted"
            raise
        except AgentLoopDetectedError as e:
            logger.error("Agent loop detected", agent=self.name, session_id=context.session_id, iterations=e.iterations)
            return self._fail(context, _result(False, error=str(e), error_type=type(e).__name__, iterations=e.iterations))
        except BudgetExceededError as e:
            logger.warning("Agent budget exhausted", agent=self.name, session_id=context.session_id, error=str(e))
            return self._fail(context, _result(False, error=str(e), error_type=type(e).__name__))
        except CircuitOpenError as e:
            logger.warning("Provider circuit open", agent=self.name, session_id=context.session_id, breaker=e.breaker_name)
            return self._fail(
                context,
                _result(
                    False,
                    error=str(e),
                    error_type=type(e).__name__,
                    retryable=True,
                    retry_after_seconds=e.retry_after_seconds,
                ),
            )
        except ServiceError as e:
            logger.error("Agent run failed", agent=self.name, session_id=context.session_id, error=str(e))
            return self._fail(context, _result(False, error=str(e), error_type=type(e).__name__, retryable=e.retryable))
        except BuildwrightError as e:
            logger.error("Agent run failed", agent=self.name, session_id=context.session_id, error=str(e))
            return self._fail(context, _result(False, error=str(e), error_type=type(e).__name__, retryable=True))
        except Exception as e:
            logger.exception("Agent run crashed", agent=self.name, session_id=context.session_id)
            return self._fail(context, _result(False, error=str(e), error_type=type(e).__name__, retryable=True))

        problems = self.validate_output(context)
        if problems:
            message = "; ".join(problems)
            logger.warning("Agent output incomplete", agent=self.name, problems=problems)
            return self._fail(
                context,
                _result(
                    False,
                    error=message,
                    error_type="MissingOutput",
                    retryable=True,
                    iterations=iterations,
                    usage=usage,
                    summary=summary,
                ),
            )

        state.status = AgentStatus.COMPLETED
        state.progress = 100
        result = _result(True, summary=summary, iterations=iterations, usage=usage)
        logger.info(
            "Agent run completed",
            agent=self.name,
            session_id=context.session_id,
            iterations=iterations,
            tokens=usage.total_tokens,
            latency_ms=round(result.latency_ms, 1),
        )
        context.emit(
            EventType.AGENT_COMPLETED,
            {"iterations": iterations, "tokens": usage.total_tokens, "summary": summary[:500]},
            agent=self.name,
        )
        return result

    def _fail(self, context: AgentContext, result: AgentResult) -> AgentResult:
        state = context.agent_state(self.name)
        state.status = AgentStatus.ERROR
        state.error = result.error
        context.emit(
            EventType.AGENT_ERROR,
            {"error": result.error, "error_type": result.error_type, "retryable": result.retryable},
            agent=self.name,
        )
        return result
