"""
Architect Agent.

Designs the solution and breaks it into build tasks, each mapped to the
requirements it satisfies. Re-invoked with the uncovered requirement ids when
plan validation finds gaps.
"""

from __future__ import annotations

from typing import Any

from ..knowledge import PLAN_PATH, REQUIREMENTS_PATH, RESEARCH_PATH
from .base import KNOWLEDGE_TOOLS, Agent, AgentTask, PromptTemplate, format_document, format_feedback
from .context import AgentContext
from .tools import ToolName


class ArchitectAgent(Agent):
    """Produces the build plan."""

    NAME = "architect"
    DESCRIPTION = "Designs the architecture and a requirement-complete task plan"
    TOOLS = KNOWLEDGE_TOOLS | {ToolName.ASK_USER, ToolName.SUBMIT_PLAN}
    REQUIRED_OUTPUTS = (PLAN_PATH,)

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="architect_v1",
            version="1.0.0",
            system_prompt="""You are a Software Architect. Design a small, buildable solution for the
requirements and split it into concrete build tasks.

RULES:
1. Every requirement id must be referenced by at least one task.
2. Each task lists the files it creates or edits, using project-relative paths.
3. Keep the tech stack minimal and appropriate to the request.
4. Submit the plan with submit_plan. If it reports uncovered requirements, fix the
   plan and submit again.
5. Reply with a one-line summary when done.
""",
            user_prompt_template="""## Requirements
{requirements}

## Research
{research}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        requirements = context.knowledge.read(REQUIREMENTS_PATH)
        research = context.knowledge.read(RESEARCH_PATH)
        return {
            "requirements": format_document(requirements.content if requirements else None),
            "research": format_document(research.content if research else None),
            "feedback": format_feedback(task, heading="Uncovered requirements from the previous plan"),
        }
