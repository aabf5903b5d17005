"""
Tool catalogue.

The set of tools is closed: every tool has a name in ``ToolName``, a pydantic
model describing its arguments and a description shown to the model. The
JSON schema handed to providers is generated from the argument model.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..models.documents import PlanTask, Requirement, VerificationIssue
from .llm import ToolSchema


class ToolName(str, Enum):
    """Every tool an agent can invoke."""

    READ_KNOWLEDGE = "read_knowledge"
    WRITE_KNOWLEDGE = "write_knowledge"
    SEARCH_KNOWLEDGE = "search_knowledge"
    LIST_KNOWLEDGE = "list_knowledge"
    EMIT_PROGRESS = "emit_progress"
    ASK_USER = "ask_user"
    REPORT_CONFIDENCE = "report_confidence"
    SUBMIT_REQUIREMENTS = "submit_requirements"
    WEB_SEARCH = "web_search"
    WEB_FETCH = "web_fetch"
    SUBMIT_PLAN = "submit_plan"
    WRITE_FILE = "write_file"
    SUBMIT_VERIFICATION = "submit_verification"
    DEPLOY = "deploy"


class ReadKnowledgeArgs(BaseModel):
    path: str = Field(description="Absolute knowledge path, e.g. /requirements/main")
    version: int | None = Field(default=None, ge=1, description="Only return this version")


class WriteKnowledgeArgs(BaseModel):
    path: str = Field(description="Absolute knowledge path")
    content: Any = Field(description="Text or JSON content")
    expected_version: int | None = Field(
        default=None, ge=0, description="Optimistic lock; 0 means the document must not exist yet"
    )


class SearchKnowledgeArgs(BaseModel):
    query: str = Field(min_length=1)
    category: str | None = Field(default=None, description="First path segment to restrict to")
    limit: int | None = Field(default=None, ge=1, le=50, description="Defaults to the store setting")
    min_relevance: float | None = Field(default=None, ge=0.0, le=1.0)


class ListKnowledgeArgs(BaseModel):
    prefix: str | None = Field(default=None, description="Path prefix, e.g. /files")


class EmitProgressArgs(BaseModel):
    progress: int = Field(ge=0, le=100, description="Percent complete for this agent")
    message: str = Field(default="")


class AskUserArgs(BaseModel):
    question: str = Field(min_length=1)
    question_type: Literal["text", "choice", "confirm"] = Field(default="text")
    options: list[str] | None = Field(default=None, description="Choices for choice questions")


class ReportConfidenceArgs(BaseModel):
    prompt_clarity: float = Field(ge=0.0, le=1.0)
    domain_familiarity: float = Field(ge=0.0, le=1.0)
    technical_certainty: float = Field(ge=0.0, le=1.0)
    scope_definition: float = Field(ge=0.0, le=1.0)
    edge_case_coverage: float = Field(ge=0.0, le=1.0)
    rationale: str = Field(default="")


class SubmitRequirementsArgs(BaseModel):
    summary: str = Field(min_length=1)
    requirements: list[Requirement] = Field(min_length=1)
    assumptions: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


class WebSearchArgs(BaseModel):
    query: str = Field(min_length=1)
    max_results: int = Field(default=5, ge=1, le=20)


class WebFetchArgs(BaseModel):
    url: str = Field(pattern=r"^https?://")


class SubmitPlanArgs(BaseModel):
    summary: str = Field(min_length=1)
    tech_stack: list[str] = Field(default_factory=list)
    tasks: list[PlanTask] = Field(min_length=1)


class WriteFileArgs(BaseModel):
    path: str = Field(min_length=1, description="Project-relative file path, e.g. src/app.js")
    content: str
    description: str = Field(default="")


class SubmitVerificationArgs(BaseModel):
    passed: bool
    summary: str = Field(default="")
    issues: list[VerificationIssue] = Field(default_factory=list)


class DeployArgs(BaseModel):
    project_name: str | None = Field(default=None, description="Defaults to the session project name")


@dataclass(frozen=True)
class ToolSpec:
    """A tool's name, description and argument model."""

    name: ToolName
    description: str
    args_model: type[BaseModel]

    def schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name.value,
            description=self.description,
            input_schema=self.args_model.model_json_schema(),
        )


TOOL_SPECS: dict[ToolName, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(ToolName.READ_KNOWLEDGE, "Read a knowledge document by path.", ReadKnowledgeArgs),
        ToolSpec(
            ToolName.WRITE_KNOWLEDGE,
            "Create or update a knowledge document. Pass expected_version to guard against concurrent edits.",
            WriteKnowledgeArgs,
        ),
        ToolSpec(ToolName.SEARCH_KNOWLEDGE, "Keyword search over knowledge documents.", SearchKnowledgeArgs),
        ToolSpec(ToolName.LIST_KNOWLEDGE, "List knowledge paths, optionally under a prefix.", ListKnowledgeArgs),
        ToolSpec(ToolName.EMIT_PROGRESS, "Report progress on the current task to the user.", EmitProgressArgs),
        ToolSpec(
            ToolName.ASK_USER,
            "Ask the user a clarifying question and wait for the answer. May time out.",
            AskUserArgs,
        ),
        ToolSpec(
            ToolName.REPORT_CONFIDENCE,
            "Report how well the request is understood. Low scores mean the user should be asked.",
            ReportConfidenceArgs,
        ),
        ToolSpec(
            ToolName.SUBMIT_REQUIREMENTS,
            "Submit the structured requirements. Every requirement needs a unique id.",
            SubmitRequirementsArgs,
        ),
        ToolSpec(ToolName.WEB_SEARCH, "Search the web.", WebSearchArgs),
        ToolSpec(ToolName.WEB_FETCH, "Fetch the text content of a web page.", WebFetchArgs),
        ToolSpec(
            ToolName.SUBMIT_PLAN,
            "Submit the build plan. Every requirement id must be covered by at least one task.",
            SubmitPlanArgs,
        ),
        ToolSpec(ToolName.WRITE_FILE, "Create or overwrite a project source file.", WriteFileArgs),
        ToolSpec(ToolName.SUBMIT_VERIFICATION, "Submit the verification verdict and issues.", SubmitVerificationArgs),
        ToolSpec(ToolName.DEPLOY, "Deploy the generated files and record the resulting URL.", DeployArgs),
    )
}


def tool_schemas(names: list[ToolName] | tuple[ToolName, ...] | frozenset[ToolName]) -> list[ToolSchema]:
    """Provider schemas for ``names`` in catalogue order."""
    return [spec.schema() for name, spec in TOOL_SPECS.items() if name in names]


class ToolResult(BaseModel):
    """Outcome of a tool invocation as reported back to the model."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_content(self) -> str:
        return json.dumps(self.model_dump(mode="json"), default=str)
