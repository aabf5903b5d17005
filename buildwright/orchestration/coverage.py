"""
Plan coverage validation.

Every requirement must be referenced by at least one planned task before
building starts.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..models.documents import PlanDocument, RequirementsDocument


class CoverageReport(BaseModel):
    """Which requirements a plan covers."""

    total_requirements: int
    covered_requirements: int
    coverage_percent: int = Field(ge=0, le=100)
    is_complete: bool
    missing_requirements: list[str] = Field(default_factory=list)
    unknown_references: list[str] = Field(default_factory=list)


def validate_plan_coverage(requirements: RequirementsDocument, plan: PlanDocument) -> CoverageReport:
    """Compare the requirement ids against the ids referenced by plan tasks.

    References to ids that are not in the requirements document do not count
    towards coverage; they are reported separately.
    """
    required = list(dict.fromkeys(requirements.requirement_ids))
    referenced = {rid for task in plan.tasks for rid in task.requirement_ids}
    covered = [rid for rid in required if rid in referenced]
    missing = [rid for rid in required if rid not in referenced]
    total = len(required)
    # Half-up integer rounding: 1 of 8 is 13, not 12
    percent = (200 * len(covered) + total) // (2 * total) if total else 100
    return CoverageReport(
        total_requirements=total,
        covered_requirements=len(covered),
        coverage_percent=percent,
        is_complete=len(covered) == total,
        missing_requirements=missing,
        unknown_references=sorted(referenced - set(required)),
    )
