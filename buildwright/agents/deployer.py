"""
Deployer Agent.

Publishes the generated files through the deployment capability.
"""

from __future__ import annotations

from typing import Any

from ..knowledge import DEPLOYMENT_PATH, FILES_PREFIX, PLAN_PATH
from .base import Agent, AgentTask, PromptTemplate, format_document, format_feedback
from .context import AgentContext
from .tools import ToolName


class DeployerAgent(Agent):
    """Deploys the build."""

    NAME = "deployer"
    DESCRIPTION = "Deploys the generated project and records its URL"
    TOOLS = frozenset(
        {ToolName.READ_KNOWLEDGE, ToolName.LIST_KNOWLEDGE, ToolName.EMIT_PROGRESS, ToolName.DEPLOY}
    )
    REQUIRED_OUTPUTS = (DEPLOYMENT_PATH,)

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="deployer_v1",
            version="1.0.0",
            system_prompt="""You are a Release Engineer. Deploy the generated project by calling deploy.
If deploy fails, report the error in one line; do not retry more than once.
""",
            user_prompt_template="""## Project
{project_name}

## Plan
{plan}

## Files
{files}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        plan = context.knowledge.read(PLAN_PATH)
        return {
            "project_name": context.session.project_name,
            "plan": format_document(plan.content if plan else None),
            "files": "\n".join(context.knowledge.list_paths(FILES_PREFIX)) or "(none)",
            "feedback": format_feedback(task),
        }
