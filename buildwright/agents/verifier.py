"""
Verifier Agent.

Reviews the generated files against the requirements and records a verdict.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..knowledge import FILES_PREFIX, REQUIREMENTS_PATH, VERIFICATION_PATH
from ..models.documents import VerificationReport
from .base import KNOWLEDGE_TOOLS, Agent, AgentTask, PromptTemplate, format_document, format_feedback
from .context import AgentContext
from .tools import ToolName


class VerifierAgent(Agent):
    """Checks the build against the requirements."""

    NAME = "verifier"
    DESCRIPTION = "Verifies generated files against the requirements"
    TOOLS = KNOWLEDGE_TOOLS | {ToolName.SUBMIT_VERIFICATION}
    REQUIRED_OUTPUTS = (VERIFICATION_PATH,)

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="verifier_v1",
            version="1.0.0",
            system_prompt="""You are a QA Engineer. Review the generated project against its requirements.

RULES:
1. Read each file with read_knowledge before judging it.
2. Report only real defects: missing functionality, broken references, syntax errors.
3. Use severity "critical" or "major" for anything that blocks a requirement, "minor" otherwise.
4. Set passed to true only when no critical or major issues remain.
5. Submit the verdict with submit_verification exactly once.
""",
            user_prompt_template="""## Requirements
{requirements}

## Files
{files}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        requirements = context.knowledge.read(REQUIREMENTS_PATH)
        return {
            "requirements": format_document(requirements.content if requirements else None),
            "files": "\n".join(context.knowledge.list_paths(FILES_PREFIX)) or "(none)",
            "feedback": format_feedback(task, heading="Issues reported by the previous verification"),
        }

    def validate_output(self, context: AgentContext) -> list[str]:
        document = context.knowledge.read(VERIFICATION_PATH)
        if document is None:
            return [f"missing output {VERIFICATION_PATH}"]
        try:
            VerificationReport.model_validate(document.content)
        except PydanticValidationError as e:
            return [f"malformed {VERIFICATION_PATH}: {e.error_count()} validation errors; use submit_verification"]
        return []
