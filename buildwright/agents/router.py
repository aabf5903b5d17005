"""
Tool router.

Dispatches a model's tool invocation to its handler. Argument validation,
per-agent tool permissions and error capture live here so that a failing
tool never crashes the agent loop: every outcome, good or bad, is reported
back to the model as a ``ToolResult``. Only a session abort escapes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Collection
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import BuildwrightError, SessionAbortedError, ToolError
from ..core.logging import get_logger
from ..events import EventType
from ..knowledge import (
    DEPLOYMENT_PATH,
    FILES_PREFIX,
    PLAN_PATH,
    REQUIREMENTS_PATH,
    VERIFICATION_PATH,
    collect_files,
    validate_path,
)
from ..models.documents import (
    DeploymentRecord,
    GeneratedFile,
    PlanDocument,
    RequirementsDocument,
    VerificationReport,
)
from ..models.session import AgentStatus
from ..resilience import guarded_call
from .context import AgentContext
from .llm import ToolUseBlock
from .tools import (
    TOOL_SPECS,
    AskUserArgs,
    DeployArgs,
    EmitProgressArgs,
    ListKnowledgeArgs,
    ReadKnowledgeArgs,
    ReportConfidenceArgs,
    SearchKnowledgeArgs,
    SubmitPlanArgs,
    SubmitRequirementsArgs,
    SubmitVerificationArgs,
    ToolName,
    ToolResult,
    WebFetchArgs,
    WebSearchArgs,
    WriteFileArgs,
    WriteKnowledgeArgs,
)

logger = get_logger(__name__)

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "prompt_clarity": 0.25,
    "domain_familiarity": 0.15,
    "technical_certainty": 0.20,
    "scope_definition": 0.25,
    "edge_case_coverage": 0.15,
}

PREVIEW_CHARS = 300

Handler = Callable[[Any, str, AgentContext], Awaitable[Any]]


def confidence_score(factors: ReportConfidenceArgs) -> float:
    """Weighted confidence in [0, 1]."""
    score = sum(getattr(factors, name) * weight for name, weight in CONFIDENCE_WEIGHTS.items())
    return round(score, 4)


def _preview(content: Any) -> str:
    text = content if isinstance(content, str) else str(content)
    return text[:PREVIEW_CHARS]


def _file_path(relative: str) -> tuple[str, str]:
    """Return (project-relative path, knowledge path) for a generated file."""
    relative = relative.strip().lstrip("/")
    return relative, validate_path(f"{FILES_PREFIX}/{relative}")


class ToolRouter:
    """Validates and executes tool invocations for every agent."""

    def __init__(self) -> None:
        self._handlers: dict[ToolName, Handler] = {
            ToolName.READ_KNOWLEDGE: self._read_knowledge,
            ToolName.WRITE_KNOWLEDGE: self._write_knowledge,
            ToolName.SEARCH_KNOWLEDGE: self._search_knowledge,
            ToolName.LIST_KNOWLEDGE: self._list_knowledge,
            ToolName.EMIT_PROGRESS: self._emit_progress,
            ToolName.ASK_USER: self._ask_user,
            ToolName.REPORT_CONFIDENCE: self._report_confidence,
            ToolName.SUBMIT_REQUIREMENTS: self._submit_requirements,
            ToolName.WEB_SEARCH: self._web_search,
            ToolName.WEB_FETCH: self._web_fetch,
            ToolName.SUBMIT_PLAN: self._submit_plan,
            ToolName.WRITE_FILE: self._write_file,
            ToolName.SUBMIT_VERIFICATION: self._submit_verification,
            ToolName.DEPLOY: self._deploy,
        }

    async def dispatch(
        self,
        call: ToolUseBlock,
        agent: str,
        allowed: Collection[ToolName],
        context: AgentContext,
    ) -> ToolResult:
        """Execute one tool invocation.

        Raises:
            SessionAbortedError: The session was aborted while the tool ran.
        """
        try:
            name = ToolName(call.name)
        except ValueError:
            return ToolResult.fail(f"Unknown tool: {call.name}")
        if name not in allowed:
            return ToolResult.fail(f"Tool {name.value} is not available to {agent}")

        spec = TOOL_SPECS[name]
        try:
            args: BaseModel = spec.args_model.model_validate(call.input)
        except PydanticValidationError as e:
            return ToolResult.fail(f"Invalid arguments for {name.value}: {e.errors(include_url=False)}")

        context.emit(EventType.TOOL_CALLED, {"tool": name.value, "tool_use_id": call.id}, agent=agent)
        try:
            data = await self._handlers[name](args, agent, context)
            result = ToolResult.ok(data)
        except SessionAbortedError:
            raise
        except BuildwrightError as e:
            result = ToolResult.fail(str(e))
        except Exception as e:
            logger.exception("Tool handler crashed", tool=name.value, agent=agent)
            result = ToolResult.fail(f"{type(e).__name__}: {e}")

        context.emit(
            EventType.TOOL_RESULT,
            {"tool": name.value, "tool_use_id": call.id, "success": result.success, "error": result.error},
            agent=agent,
        )
        return result

    # -- knowledge ---------------------------------------------------------

    async def _read_knowledge(self, args: ReadKnowledgeArgs, agent: str, context: AgentContext) -> Any:
        document = context.knowledge.read(args.path, args.version)
        if document is None:
            raise ToolError(message=f"No document at {args.path}", tool_name=ToolName.READ_KNOWLEDGE.value)
        return {
            "path": document.path,
            "version": document.version,
            "content": document.content,
            "updated_by": document.updated_by,
            "updated_at": document.updated_at.isoformat(),
        }

    async def _write_knowledge(self, args: WriteKnowledgeArgs, agent: str, context: AgentContext) -> Any:
        document = context.knowledge.write(args.path, args.content, args.expected_version, author=agent)
        return {"path": document.path, "version": document.version}

    async def _search_knowledge(self, args: SearchKnowledgeArgs, agent: str, context: AgentContext) -> Any:
        results = context.knowledge.search(
            args.query,
            category=args.category,
            limit=args.limit,
            min_relevance=args.min_relevance,
        )
        return [
            {
                "path": r.document.path,
                "version": r.document.version,
                "relevance": round(r.relevance, 4),
                "preview": _preview(r.document.content),
            }
            for r in results
        ]

    async def _list_knowledge(self, args: ListKnowledgeArgs, agent: str, context: AgentContext) -> Any:
        return {"paths": context.knowledge.list_paths(args.prefix)}

    # -- user interaction --------------------------------------------------

    async def _emit_progress(self, args: EmitProgressArgs, agent: str, context: AgentContext) -> Any:
        state = context.agent_state(agent)
        state.progress = args.progress
        state.last_message = args.message or state.last_message
        context.emit(EventType.AGENT_PROGRESS, {"progress": args.progress, "message": args.message}, agent=agent)
        return {"acknowledged": True}

    async def _ask_user(self, args: AskUserArgs, agent: str, context: AgentContext) -> Any:
        state = context.agent_state(agent)
        state.status = AgentStatus.WAITING_FOR_USER
        try:
            outcome = await context.responses.ask(
                context.session_id,
                agent,
                args.question,
                question_type=args.question_type,
                options=args.options,
                timeout=context.ask_user_timeout,
                abort=context.abort,
                phase=context.phase,
            )
        finally:
            state.status = AgentStatus.ACTIVE
        if outcome.answered:
            return {"answered": True, "response": outcome.response}
        return {
            "answered": False,
            "timed_out": True,
            "message": "The user did not answer in time. Continue with reasonable defaults and record them as assumptions.",
        }

    async def _report_confidence(self, args: ReportConfidenceArgs, agent: str, context: AgentContext) -> Any:
        score = confidence_score(args)
        should_ask = score < context.confidence_threshold
        context.agent_state(agent).confidence = score
        context.emit(
            EventType.AGENT_CONFIDENCE,
            {"score": score, "threshold": context.confidence_threshold, "rationale": args.rationale},
            agent=agent,
        )
        return {"score": score, "threshold": context.confidence_threshold, "should_ask_user": should_ask}

    # -- phase outputs -----------------------------------------------------

    async def _submit_requirements(self, args: SubmitRequirementsArgs, agent: str, context: AgentContext) -> Any:
        ids = [r.id for r in args.requirements]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ToolError(
                message=f"Duplicate requirement ids: {', '.join(duplicates)}",
                tool_name=ToolName.SUBMIT_REQUIREMENTS.value,
            )
        document = RequirementsDocument(
            summary=args.summary,
            requirements=args.requirements,
            assumptions=args.assumptions,
            open_questions=args.open_questions,
        )
        stored = context.knowledge.write(REQUIREMENTS_PATH, document.model_dump(mode="json"), author=agent)
        return {"path": stored.path, "version": stored.version, "requirements": len(ids)}

    async def _submit_plan(self, args: SubmitPlanArgs, agent: str, context: AgentContext) -> Any:
        requirements = context.knowledge.read(REQUIREMENTS_PATH)
        if requirements is None:
            raise ToolError(message="No requirements to plan against", tool_name=ToolName.SUBMIT_PLAN.value)
        known = set(RequirementsDocument.model_validate(requirements.content).requirement_ids)
        referenced = {rid for task in args.tasks for rid in task.requirement_ids}
        unknown = sorted(referenced - known)
        if unknown:
            raise ToolError(
                message=f"Tasks reference unknown requirement ids: {', '.join(unknown)}",
                tool_name=ToolName.SUBMIT_PLAN.value,
            )
        plan = PlanDocument(
            summary=args.summary,
            tech_stack=args.tech_stack,
            tasks=args.tasks,
            requirements_version=requirements.version,
        )
        stored = context.knowledge.write(PLAN_PATH, plan.model_dump(mode="json"), author=agent)
        return {
            "path": stored.path,
            "version": stored.version,
            "tasks": len(args.tasks),
            "uncovered_requirements": sorted(known - referenced),
        }

    async def _write_file(self, args: WriteFileArgs, agent: str, context: AgentContext) -> Any:
        relative, path = _file_path(args.path)
        content = GeneratedFile(path=relative, content=args.content, description=args.description)
        document = context.knowledge.write(path, content.model_dump(mode="json"), author=agent)
        event_type = EventType.FILE_CREATED if document.version == 1 else EventType.FILE_UPDATED
        context.emit(
            event_type,
            {"path": relative, "version": document.version, "size": len(args.content)},
            agent=agent,
        )
        return {"path": relative, "version": document.version}

    async def _submit_verification(self, args: SubmitVerificationArgs, agent: str, context: AgentContext) -> Any:
        report = VerificationReport(
            passed=args.passed,
            summary=args.summary,
            issues=args.issues,
            files_checked=sorted(collect_files(context.knowledge)),
        )
        stored = context.knowledge.write(VERIFICATION_PATH, report.model_dump(mode="json"), author=agent)
        return {"path": stored.path, "version": stored.version, "issues": len(args.issues)}

    # -- external capabilities ---------------------------------------------

    async def _web_search(self, args: WebSearchArgs, agent: str, context: AgentContext) -> Any:
        search = context.search
        if search is None:
            raise ToolError(message="Web search is not configured", tool_name=ToolName.WEB_SEARCH.value)
        hits = await guarded_call(
            context.breakers.get("search"),
            lambda: context.abort.guard(search.search(args.query, args.max_results)),
            context.retry_policy,
            operation="web_search",
        )
        return [hit.model_dump() for hit in hits]

    async def _web_fetch(self, args: WebFetchArgs, agent: str, context: AgentContext) -> Any:
        search = context.search
        if search is None:
            raise ToolError(message="Web fetch is not configured", tool_name=ToolName.WEB_FETCH.value)
        text = await guarded_call(
            context.breakers.get("search"),
            lambda: context.abort.guard(search.fetch(args.url)),
            context.retry_policy,
            operation="web_fetch",
        )
        return {"url": args.url, "content": text}

    async def _deploy(self, args: DeployArgs, agent: str, context: AgentContext) -> Any:
        deployer = context.deployer
        if deployer is None:
            raise ToolError(message="Deployment is not configured", tool_name=ToolName.DEPLOY.value)
        files = collect_files(context.knowledge)
        if not files:
            raise ToolError(message="No generated files to deploy", tool_name=ToolName.DEPLOY.value)
        project = args.project_name or context.session.project_name
        outcome = await guarded_call(
            context.breakers.get("deploy"),
            lambda: context.abort.guard(deployer.deploy(project, files)),
            context.retry_policy,
            operation="deploy",
        )
        record = DeploymentRecord(url=outcome.url, provider=outcome.provider, file_count=len(files))
        stored = context.knowledge.write(DEPLOYMENT_PATH, record.model_dump(mode="json"), author=agent)
        context.emit(
            EventType.DEPLOYMENT_COMPLETED,
            {"url": outcome.url, "provider": outcome.provider, "files": len(files)},
            agent=agent,
        )
        return {"url": outcome.url, "version": stored.version}
