"""
Structured documents exchanged between phase agents.

These are the payloads stored at the well-known knowledge paths. Agents
submit them through typed tools, so the orchestrator can rely on their shape
when validating plan coverage and verification outcomes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ..core.types import utcnow

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_.\-]+$"


class Requirement(BaseModel):
    """A single requirement captured during intake."""

    id: str = Field(pattern=IDENTIFIER_PATTERN, description="Stable identifier, e.g. REQ-001")
    title: str = Field(min_length=1)
    description: str = Field(default="")
    priority: Literal["must", "should", "could"] = Field(default="must")
    acceptance_criteria: list[str] = Field(default_factory=list)


class RequirementsDocument(BaseModel):
    """Content of ``/requirements/main``."""

    summary: str
    requirements: list[Requirement] = Field(min_length=1)
    assumptions: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)

    @property
    def requirement_ids(self) -> list[str]:
        return [r.id for r in self.requirements]


class PlanTask(BaseModel):
    """A unit of build work and the requirements it satisfies."""

    id: str = Field(pattern=IDENTIFIER_PATTERN)
    title: str = Field(min_length=1)
    description: str = Field(default="")
    requirement_ids: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list, description="Files the task creates or edits")


class PlanDocument(BaseModel):
    """Content of ``/plan/main``."""

    summary: str
    tech_stack: list[str] = Field(default_factory=list)
    tasks: list[PlanTask] = Field(min_length=1)
    requirements_version: int = Field(
        default=0, ge=0, description="Version of /requirements/main the plan was derived from"
    )


class VerificationIssue(BaseModel):
    """A defect found during verification."""

    description: str
    severity: Literal["critical", "major", "minor"] = Field(default="major")
    file: str | None = Field(default=None)
    requirement_id: str | None = Field(default=None)


class VerificationReport(BaseModel):
    """Content of ``/verification/report``."""

    passed: bool
    summary: str = Field(default="")
    issues: list[VerificationIssue] = Field(default_factory=list)
    files_checked: list[str] = Field(default_factory=list)

    @property
    def blocking_issues(self) -> list[VerificationIssue]:
        return [i for i in self.issues if i.severity != "minor"]


class GeneratedFile(BaseModel):
    """Content of a ``/files/<path>`` document."""

    path: str
    content: str
    description: str = Field(default="")


class DeploymentRecord(BaseModel):
    """Content of ``/deployment/result``."""

    url: str
    provider: str = Field(default="")
    file_count: int = Field(default=0, ge=0)
    deployed_at: datetime = Field(default_factory=utcnow)
