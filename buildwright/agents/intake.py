"""
Intake Agent.

Turns the user's prompt into a structured requirements document, asking the
user for clarification when its confidence is low.
"""

from __future__ import annotations

from typing import Any

from ..knowledge import REQUIREMENTS_PATH
from .base import KNOWLEDGE_TOOLS, Agent, AgentTask, PromptTemplate, format_feedback
from .context import AgentContext
from .tools import ToolName


class IntakeAgent(Agent):
    """Captures requirements from the generation prompt."""

    NAME = "intake"
    DESCRIPTION = "Turns the prompt into structured, testable requirements"
    TOOLS = KNOWLEDGE_TOOLS | {ToolName.ASK_USER, ToolName.REPORT_CONFIDENCE, ToolName.SUBMIT_REQUIREMENTS}
    REQUIRED_OUTPUTS = (REQUIREMENTS_PATH,)

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="intake_v1",
            version="1.0.0",
            system_prompt="""You are a Requirements Analyst. You turn a short product request into a
precise list of requirements that a development team can build and test.

RULES:
1. Call report_confidence once you have read the request.
2. If report_confidence says should_ask_user, call ask_user with one focused question
   before going further. Never guess on ambiguous requirements.
3. If ask_user times out, continue with conservative defaults and list each default
   under assumptions.
4. Give every requirement a stable id (REQ-001, REQ-002, ...), a priority
   (must/should/could) and measurable acceptance criteria.
5. Finish by calling submit_requirements exactly once, then reply with a one-line summary.
""",
            user_prompt_template="""## Project
{project_name}

## Request
{prompt}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        return {
            "project_name": context.session.project_name,
            "prompt": context.session.prompt,
            "feedback": format_feedback(task),
        }
