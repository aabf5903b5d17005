"""
Generation orchestrator.

Drives one session through the phase state machine:

    intake -> research -> architecture -> plan_validation -> building
           -> verification -> deployment -> complete

Plan validation sends the session back to architecture when requirements
are uncovered (or changed after planning), and verification sends it back to
building for a bounded number of fix iterations. Every phase boundary is
checkpointed. Failures and aborts still return the artifacts produced so far.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..agents import (
    Agent,
    AgentContext,
    AgentResult,
    AgentTask,
    ArchitectAgent,
    BuilderAgent,
    DeployerAgent,
    IntakeAgent,
    LanguageModel,
    ResearchAgent,
    ToolRouter,
    VerifierAgent,
)
from ..core.cancellation import AbortSignal
from ..core.config import Config, get_config
from ..core.exceptions import (
    BuildwrightError,
    PipelineError,
    PlanCoverageIncompleteError,
    SessionAbortedError,
    VerificationFailedError,
    VersionMismatchError,
)
from ..core.logging import get_logger, log_context
from ..core.types import utcnow
from ..events import EventStream, EventType
from ..knowledge import (
    DEPLOYMENT_PATH,
    PLAN_PATH,
    REQUIREMENTS_PATH,
    VERIFICATION_PATH,
    KnowledgeStore,
    collect_files,
)
from ..models.documents import PlanDocument, RequirementsDocument, VerificationReport
from ..models.session import GenerationOptions, GenerationSession, Phase, PhaseStatus
from ..resilience import BudgetTracker, CircuitBreakerRegistry, RetryPolicy
from ..services.deployment import DeployCapability
from ..services.research import SearchCapability
from ..storage import StorageBackend
from .checkpoint import Checkpoint, CheckpointManager
from .coverage import CoverageReport, validate_plan_coverage
from .metrics import MetricsCollector
from .phases import can_transition, is_backward, next_phase
from .responses import ResponseHandler

logger = get_logger(__name__)


class GenerationResult(BaseModel):
    """Final outcome of a session, successful or not."""

    session_id: str
    success: bool
    status: Phase
    summary: str = Field(default="")
    error: str | None = Field(default=None)
    failed_phase: Phase | None = Field(default=None)
    files: dict[str, str] = Field(default_factory=dict)
    documents: dict[str, Any] = Field(default_factory=dict)
    deployment_url: str | None = Field(default=None)
    coverage: CoverageReport | None = Field(default=None)
    verification: VerificationReport | None = Field(default=None)
    usage: dict[str, Any] = Field(default_factory=dict)
    duration_seconds: float = Field(default=0.0)


@dataclass
class _Run:
    """Mutable state of one orchestrator run."""

    session: GenerationSession
    knowledge: KnowledgeStore
    budget: BudgetTracker
    abort: AbortSignal
    context: AgentContext
    started: float = field(default_factory=time.perf_counter)
    architecture_attempts: int = 0
    fix_iterations: int = 0
    feedback: list[str] = field(default_factory=list)
    coverage: CoverageReport | None = None
    verification: VerificationReport | None = None

    @property
    def counters(self) -> dict[str, Any]:
        return {
            "architecture_attempts": self.architecture_attempts,
            "fix_iterations": self.fix_iterations,
            "feedback": list(self.feedback),
        }


class Orchestrator:
    """Phase state machine for generation sessions.

    One orchestrator can run many sessions concurrently; per-session state
    (knowledge store, budget, abort signal) is created for each run while the
    event stream, breakers, response handler and metrics are shared.
    """

    def __init__(
        self,
        model: LanguageModel,
        *,
        config: Config | None = None,
        events: EventStream | None = None,
        responses: ResponseHandler | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        storage: StorageBackend | None = None,
        search: SearchCapability | None = None,
        deployer: DeployCapability | None = None,
        metrics: MetricsCollector | None = None,
        retry_policy: RetryPolicy | None = None,
        agents: Mapping[Phase, Agent] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            model: Language model shared by the default agents.
            config: Configuration. Uses global config if not provided.
            events: Event stream receiving every session event.
            responses: Clarification rendezvous for ask_user.
            breakers: Circuit breakers keyed by outbound resource.
            storage: Backend for checkpoints and budget/breaker state.
            search: Web research capability, if any.
            deployer: Deployment capability; deployment is skipped without one.
            metrics: Metrics sink.
            retry_policy: Backoff for outbound calls.
            agents: Agent per phase, replacing the defaults.
        """
        self.config = config or get_config()
        self.events = events or EventStream()
        self.responses = responses or ResponseHandler(
            self.events, default_timeout=self.config.orchestrator.ask_user_timeout_seconds
        )
        resilience = self.config.resilience
        self.breakers = breakers or CircuitBreakerRegistry(
            storage,
            threshold=resilience.failure_threshold,
            reset_timeout=resilience.reset_timeout_seconds,
        )
        self.storage = storage
        self.search = search
        self.deployer = deployer
        self.metrics = metrics or MetricsCollector()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=resilience.max_attempts,
            base_delay=resilience.base_delay_seconds,
            max_delay=resilience.max_delay_seconds,
        )
        self.checkpoints = CheckpointManager(storage)

        router = ToolRouter()
        defaults: dict[Phase, Agent] = {
            Phase.INTAKE: IntakeAgent(model, router),
            Phase.RESEARCH: ResearchAgent(model, router),
            Phase.ARCHITECTURE: ArchitectAgent(model, router),
            Phase.BUILDING: BuilderAgent(model, router),
            Phase.VERIFICATION: VerifierAgent(model, router),
            Phase.DEPLOYMENT: DeployerAgent(model, router),
        }
        defaults.update(agents or {})
        self.agents = defaults

    def create_session(
        self,
        prompt: str,
        project_name: str,
        options: GenerationOptions | None = None,
    ) -> GenerationSession:
        return GenerationSession(prompt=prompt, project_name=project_name, options=options or GenerationOptions())

    # -- run -----------------------------------------------------------------

    def _prepare(self, session: GenerationSession, abort: AbortSignal | None) -> _Run:
        settings = self.config.orchestrator
        knowledge = KnowledgeStore(
            session.session_id,
            self.events,
            max_content_bytes=self.config.knowledge.max_content_bytes,
            default_limit=self.config.knowledge.default_limit,
            default_min_relevance=self.config.knowledge.default_min_relevance,
        )
        budget = BudgetTracker(
            session.session_id,
            self.config.budget.agent_limits,
            default_limit=self.config.budget.default_limit,
            default_model=self.config.agent.model,
            max_cost_usd=self.config.budget.max_cost_usd,
            storage=self.storage,
        )
        abort = abort or AbortSignal(session.session_id)
        context = AgentContext(
            session=session,
            knowledge=knowledge,
            events=self.events,
            budget=budget,
            responses=self.responses,
            breakers=self.breakers,
            abort=abort,
            retry_policy=self.retry_policy,
            search=self.search,
            deployer=self.deployer,
            max_iterations=settings.max_iterations,
            ask_user_timeout=settings.ask_user_timeout_seconds,
            confidence_threshold=settings.confidence_threshold,
        )
        return _Run(session=session, knowledge=knowledge, budget=budget, abort=abort, context=context)

    def _restore(self, run: _Run, checkpoint: Checkpoint) -> None:
        run.knowledge.restore_snapshot(checkpoint.documents)
        run.budget.restore(checkpoint.budget)
        saved = checkpoint.session
        run.session.phases = {p: r.model_copy() for p, r in saved.phases.items()}
        run.session.agents = {n: s.model_copy() for n, s in saved.agents.items()}
        run.session.current_phase = checkpoint.phase
        run.architecture_attempts = int(checkpoint.counters.get("architecture_attempts", 0))
        run.fix_iterations = int(checkpoint.counters.get("fix_iterations", 0))
        run.feedback = list(checkpoint.counters.get("feedback", []))
        self.checkpoints.remember(checkpoint)

    async def run(
        self,
        session: GenerationSession,
        *,
        abort: AbortSignal | None = None,
        resume_from: Checkpoint | None = None,
    ) -> GenerationResult:
        """Run a session to a terminal phase.

        Args:
            session: Session to drive. It is mutated as phases progress.
            abort: Signal that cancels the run; one is created if omitted.
            resume_from: Checkpoint to continue from instead of starting at intake.

        Returns:
            GenerationResult: Outcome plus every artifact produced.
        """
        run = self._prepare(session, abort)
        with log_context(session_id=session.session_id):
            return await self._drive(run, resume_from)

    async def _drive(self, run: _Run, resume_from: Checkpoint | None) -> GenerationResult:
        session = run.session
        phase = Phase.INTAKE
        if resume_from is not None:
            self._restore(run, resume_from)
            phase = resume_from.next_phase

        logger.info(
            "Generation started",
            project=session.project_name,
            resumed_from=resume_from.phase.value if resume_from else None,
        )
        self.events.emit(
            EventType.GENERATION_STARTED,
            session.session_id,
            {
                "prompt": session.prompt,
                "project_name": session.project_name,
                "resumed_from": resume_from.phase.value if resume_from else None,
            },
        )

        try:
            while not phase.is_terminal:
                run.abort.raise_if_aborted()
                following = await self._execute_phase(run, phase)
                await self._checkpoint(run, phase, following)
                phase = following
            return self._complete(run)
        except SessionAbortedError as e:
            return self._terminate(run, Phase.ABORTED, str(e))
        except BuildwrightError as e:
            return self._terminate(run, Phase.FAILED, str(e))
        except Exception as e:
            logger.exception("Orchestrator crashed")
            return self._terminate(run, Phase.FAILED, f"{type(e).__name__}: {e}")
        finally:
            run.knowledge.close()
            self.responses.cancel_session(session.session_id)
            await run.budget.persist()

    # -- transitions ---------------------------------------------------------

    def _transition(self, run: _Run, target: Phase) -> None:
        current = run.session.current_phase
        if current == target:
            return
        if not can_transition(current, target):
            self.metrics.record_invalid_transition()
            raise PipelineError(
                message=f"invalid transition {current.value} -> {target.value}",
                stage=current.value,
                session_id=run.session.session_id,
            )
        backward = is_backward(current, target)
        if backward:
            self.metrics.record_backward_transition(current.value, target.value)
        run.session.current_phase = target
        self.events.emit(
            EventType.PHASE_TRANSITION,
            run.session.session_id,
            {"from": current.value, "to": target.value, "backward": backward},
            phase=target.value,
        )

    def _skip(self, run: _Run, phase: Phase, reason: str) -> None:
        run.session.finish_phase(phase, PhaseStatus.SKIPPED)
        self.events.emit(
            EventType.PHASE_SKIPPED,
            run.session.session_id,
            {"label": phase.label, "reason": reason},
            phase=phase.value,
        )

    def _forward(self, run: _Run, phase: Phase) -> Phase:
        options = run.session.options
        settings = self.config.orchestrator
        skip_research = options.skip_research if options.skip_research is not None else settings.skip_research
        skip_deployment = (
            options.skip_deployment if options.skip_deployment is not None else settings.skip_deployment
        ) or self.deployer is None

        following = next_phase(phase, skip_research=skip_research, skip_deployment=skip_deployment)
        if phase == Phase.INTAKE and following == Phase.ARCHITECTURE:
            self._skip(run, Phase.RESEARCH, "research disabled")
        if phase == Phase.VERIFICATION and following == Phase.COMPLETE:
            self._skip(run, Phase.DEPLOYMENT, "deployment disabled" if self.deployer else "no deployer")
        return following

    # -- phases --------------------------------------------------------------

    async def _execute_phase(self, run: _Run, phase: Phase) -> Phase:
        with log_context(phase=phase.value):
            return await self._dispatch_phase(run, phase)

    async def _dispatch_phase(self, run: _Run, phase: Phase) -> Phase:
        self._transition(run, phase)
        if phase == Phase.INTAKE:
            await self._run_agent_phase(run, phase)
            return self._forward(run, phase)
        if phase == Phase.RESEARCH:
            await self._run_agent_phase(run, phase)
            return self._forward(run, phase)
        if phase == Phase.ARCHITECTURE:
            return await self._architecture(run)
        if phase == Phase.PLAN_VALIDATION:
            return self._plan_validation(run)
        if phase == Phase.BUILDING:
            feedback, run.feedback = run.feedback, []
            await self._run_agent_phase(run, phase, feedback)
            return Phase.VERIFICATION
        if phase == Phase.VERIFICATION:
            return await self._verification(run)
        if phase == Phase.DEPLOYMENT:
            await self._run_agent_phase(run, phase)
            return Phase.COMPLETE
        raise PipelineError(
            message=f"no handler for phase {phase.value}",
            stage=phase.value,
            session_id=run.session.session_id,
        )

    def _start(self, run: _Run, phase: Phase, agent: str | None) -> float:
        record = run.session.start_phase(phase, agent)
        self.events.emit(
            EventType.PHASE_STARTED,
            run.session.session_id,
            {"label": phase.label, "agent": agent, "attempt": record.attempts},
            agent=agent,
            phase=phase.value,
        )
        return time.perf_counter()

    def _finish(self, run: _Run, phase: Phase, started: float, error: str | None = None, **payload: Any) -> None:
        duration = time.perf_counter() - started
        self.metrics.record_phase_duration(phase.value, duration)
        status = PhaseStatus.FAILED if error else PhaseStatus.COMPLETED
        run.session.finish_phase(phase, status, error)
        self.events.emit(
            EventType.PHASE_FAILED if error else EventType.PHASE_COMPLETED,
            run.session.session_id,
            {"label": phase.label, "duration_seconds": round(duration, 3), "error": error, **payload},
            phase=phase.value,
        )

    async def _run_agent_phase(self, run: _Run, phase: Phase, feedback: list[str] | None = None) -> AgentResult:
        """Run the phase's agent, retrying bounded times on retryable failures.

        Raises:
            PipelineError: The agent failed and no retry is left.
        """
        agent = self.agents[phase]
        retries = 0
        while True:
            started = self._start(run, phase, agent.name)
            attempt = run.session.phases[phase].attempts
            result = await agent.run(AgentTask(attempt=attempt, feedback=list(feedback or [])), run.context)
            if result.success:
                self._finish(run, phase, started, agent=agent.name, iterations=result.iterations)
                return result

            self._finish(run, phase, started, error=result.error, error_type=result.error_type)
            if result.error_type == "AgentLoopDetectedError":
                self.metrics.record_loop_detection(agent.name)
            if not result.retryable or retries >= self.config.orchestrator.max_phase_retries:
                raise PipelineError(
                    message=f"{phase.value} failed: {result.error}",
                    stage=phase.value,
                    session_id=run.session.session_id,
                    context={"agent": agent.name, "error_type": result.error_type},
                )
            retries += 1
            self.metrics.record_phase_retry(phase.value)
            logger.warning(
                "Retrying phase",
                phase=phase.value,
                agent=agent.name,
                error=result.error,
                delay_seconds=result.retry_after_seconds,
            )
            if result.retry_after_seconds > 0:
                await run.abort.guard(asyncio.sleep(result.retry_after_seconds))

    async def _architecture(self, run: _Run) -> Phase:
        run.architecture_attempts += 1
        feedback, run.feedback = run.feedback, []
        await self._run_agent_phase(run, Phase.ARCHITECTURE, feedback)
        return Phase.PLAN_VALIDATION

    def _plan_validation(self, run: _Run) -> Phase:
        """Check the plan covers every requirement of the current requirements version.

        Returns ARCHITECTURE (backward) on a gap while attempts remain.
        """
        phase = Phase.PLAN_VALIDATION
        started = self._start(run, phase, None)
        session_id = run.session.session_id
        requirements_doc = run.knowledge.read(REQUIREMENTS_PATH)
        plan_doc = run.knowledge.read(PLAN_PATH)
        if requirements_doc is None or plan_doc is None:
            missing = REQUIREMENTS_PATH if requirements_doc is None else PLAN_PATH
            self._finish(run, phase, started, error=f"missing {missing}")
            raise PipelineError(message=f"plan validation needs {missing}", stage=phase.value, session_id=session_id)

        try:
            requirements = RequirementsDocument.model_validate(requirements_doc.content)
            plan = PlanDocument.model_validate(plan_doc.content)
        except PydanticValidationError as e:
            self._finish(run, phase, started, error="malformed requirements or plan")
            raise PipelineError(
                message=f"malformed requirements or plan: {e}",
                stage=phase.value,
                session_id=session_id,
                cause=e,
            )

        try:
            if plan.requirements_version != requirements_doc.version:
                raise VersionMismatchError(
                    message="plan was built against an older requirements version",
                    stage=phase.value,
                    session_id=session_id,
                    expected_version=requirements_doc.version,
                    actual_version=plan.requirements_version,
                )
            report = validate_plan_coverage(requirements, plan)
            run.coverage = report
            self.events.emit(
                EventType.PLAN_VALIDATED,
                session_id,
                {
                    "coverage_percent": report.coverage_percent,
                    "is_complete": report.is_complete,
                    "missing_requirements": report.missing_requirements,
                },
                phase=phase.value,
            )
            if not report.is_complete:
                raise PlanCoverageIncompleteError(
                    message=f"plan covers {report.coverage_percent}% of requirements",
                    stage=phase.value,
                    session_id=session_id,
                    missing_requirements=report.missing_requirements,
                    coverage_percent=report.coverage_percent,
                )
        except VersionMismatchError as e:
            return self._replan(
                run,
                started,
                e,
                [f"The requirements changed (now version {e.expected_version}); plan against the current document."],
            )
        except PlanCoverageIncompleteError as e:
            return self._replan(
                run,
                started,
                e,
                [f"Requirement {rid} is not referenced by any task." for rid in e.missing_requirements],
            )

        self._finish(run, phase, started, coverage_percent=report.coverage_percent)
        return Phase.BUILDING

    def _replan(self, run: _Run, started: float, error: PipelineError, feedback: list[str]) -> Phase:
        self._finish(run, Phase.PLAN_VALIDATION, started, error=str(error))
        limit = self.config.orchestrator.max_architecture_attempts
        if run.architecture_attempts >= limit:
            raise PipelineError(
                message=f"{error} (after {run.architecture_attempts} architecture attempts)",
                stage=Phase.PLAN_VALIDATION.value,
                session_id=run.session.session_id,
                cause=error,
            )
        logger.info("Plan rejected, re-running architecture", reason=str(error), attempt=run.architecture_attempts)
        run.feedback = feedback
        return Phase.ARCHITECTURE

    async def _verification(self, run: _Run) -> Phase:
        # A stale report from an earlier iteration must not satisfy this run
        run.knowledge.delete(VERIFICATION_PATH)
        await self._run_agent_phase(run, Phase.VERIFICATION)

        document = run.knowledge.read(VERIFICATION_PATH)
        try:
            report = VerificationReport.model_validate(document.content) if document else VerificationReport(passed=False)
        except PydanticValidationError as e:
            raise PipelineError(
                message=f"malformed verification report: {e}",
                stage=Phase.VERIFICATION.value,
                session_id=run.session.session_id,
                cause=e,
            )
        run.verification = report
        passed = report.passed and not report.blocking_issues
        self.events.emit(
            EventType.VERIFICATION_RESULT,
            run.session.session_id,
            {
                "passed": passed,
                "issues": [i.model_dump() for i in report.issues],
                "fix_iteration": run.fix_iterations,
            },
            phase=Phase.VERIFICATION.value,
        )
        if passed:
            return self._forward(run, Phase.VERIFICATION)

        issues = [
            f"[{i.severity}] {i.file + ': ' if i.file else ''}{i.description}" for i in (report.blocking_issues or report.issues)
        ] or ["Verification failed without specific issues; re-check the requirements."]
        if run.fix_iterations >= self.config.orchestrator.max_fix_iterations:
            raise VerificationFailedError(
                message=f"verification still failing after {run.fix_iterations} fix iterations",
                stage=Phase.VERIFICATION.value,
                session_id=run.session.session_id,
                issues=issues,
            )
        run.fix_iterations += 1
        run.feedback = issues
        logger.info("Verification failed, starting fix iteration", iteration=run.fix_iterations, issues=len(issues))
        return Phase.BUILDING

    # -- checkpoints and results ---------------------------------------------

    async def _checkpoint(self, run: _Run, phase: Phase, following: Phase) -> None:
        if not self.config.orchestrator.checkpoint_enabled:
            return
        session_id = run.session.session_id
        checkpoint = Checkpoint(
            session_id=session_id,
            sequence=self.checkpoints.next_sequence(session_id),
            phase=phase,
            next_phase=following,
            documents=run.knowledge.get_snapshot(),
            session=run.session.model_copy(deep=True),
            budget=run.budget.summary(),
            counters=run.counters,
        )
        key = await self.checkpoints.save(checkpoint)
        self.events.emit(
            EventType.CHECKPOINT_CREATED,
            session_id,
            {"phase": phase.value, "next_phase": following.value, "documents": len(checkpoint.documents), "key": key},
            phase=phase.value,
        )

    def _artifacts(self, run: _Run) -> dict[str, Any]:
        snapshot = run.knowledge.get_snapshot()
        deployment = snapshot.get(DEPLOYMENT_PATH)
        url = deployment.content.get("url") if deployment and isinstance(deployment.content, dict) else None
        return {
            "files": collect_files(run.knowledge),
            "documents": {path: doc.content for path, doc in snapshot.items()},
            "deployment_url": url,
        }

    def _complete(self, run: _Run) -> GenerationResult:
        self._transition(run, Phase.COMPLETE)
        run.session.completed_at = utcnow()
        artifacts = self._artifacts(run)
        duration = time.perf_counter() - run.started
        summary = f"Generated {len(artifacts['files'])} files for {run.session.project_name}"
        self.metrics.record_session_outcome("completed")
        logger.info("Generation completed", files=len(artifacts["files"]), duration_seconds=round(duration, 1))
        self.events.emit(
            EventType.GENERATION_COMPLETED,
            run.session.session_id,
            {
                "summary": summary,
                "files": sorted(artifacts["files"]),
                "deployment_url": artifacts["deployment_url"],
                "usage": run.budget.summary(),
            },
            phase=Phase.COMPLETE.value,
        )
        return GenerationResult(
            session_id=run.session.session_id,
            success=True,
            status=Phase.COMPLETE,
            summary=summary,
            coverage=run.coverage,
            verification=run.verification,
            usage=run.budget.summary(),
            duration_seconds=duration,
            **artifacts,
        )

    def _terminate(self, run: _Run, status: Phase, error: str) -> GenerationResult:
        session = run.session
        active = session.active_phase
        failed_phase = active
        if failed_phase is None and session.current_phase != Phase.IDLE and not session.current_phase.is_terminal:
            failed_phase = session.current_phase
        if active is not None:
            session.finish_phase(active, PhaseStatus.FAILED, error)
        session.current_phase = status
        session.completed_at = utcnow()
        session.error = error

        artifacts = self._artifacts(run)
        duration = time.perf_counter() - run.started
        summary = (
            f"{status.label} during {failed_phase.value if failed_phase else 'startup'}; "
            f"{len(artifacts['files'])} files produced"
        )
        self.metrics.record_session_outcome(status.value)
        event_type = EventType.GENERATION_ABORTED if status == Phase.ABORTED else EventType.GENERATION_FAILED
        logger.warning("Generation ended", status=status.value, error=error, phase=failed_phase.value if failed_phase else None)
        self.events.emit(
            event_type,
            session.session_id,
            {
                "error": error,
                "summary": summary,
                "phase": failed_phase.value if failed_phase else None,
                "files": sorted(artifacts["files"]),
                "documents": sorted(artifacts["documents"]),
                "usage": run.budget.summary(),
            },
            phase=status.value,
        )
        return GenerationResult(
            session_id=session.session_id,
            success=False,
            status=status,
            summary=summary,
            error=error,
            failed_phase=failed_phase,
            coverage=run.coverage,
            verification=run.verification,
            usage=run.budget.summary(),
            duration_seconds=duration,
            **artifacts,
        )
