"""
Builder Agent.

Writes the project files described by the plan. In a fix iteration it is
given the verifier's issues and edits only what they require.
"""

from __future__ import annotations

from typing import Any

from ..knowledge import FILES_PREFIX, PLAN_PATH, REQUIREMENTS_PATH
from .base import KNOWLEDGE_TOOLS, Agent, AgentTask, PromptTemplate, format_document, format_feedback
from .context import AgentContext
from .tools import ToolName


class BuilderAgent(Agent):
    """Generates source files."""

    NAME = "builder"
    DESCRIPTION = "Implements the plan as project files"
    TOOLS = KNOWLEDGE_TOOLS | {ToolName.WRITE_FILE}

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="builder_v1",
            version="1.0.0",
            system_prompt="""You are a Senior Software Engineer. Implement the plan task by task.

RULES:
1. Write every file with write_file, using complete file contents (no placeholders).
2. Report progress with emit_progress after each task.
3. When fixing issues, read the affected files first and change only what is needed.
4. Reply with a one-line summary when done.
""",
            user_prompt_template="""## Requirements
{requirements}

## Plan
{plan}

## Existing files
{files}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        requirements = context.knowledge.read(REQUIREMENTS_PATH)
        plan = context.knowledge.read(PLAN_PATH)
        files = context.knowledge.list_paths(FILES_PREFIX)
        return {
            "requirements": format_document(requirements.content if requirements else None),
            "plan": format_document(plan.content if plan else None),
            "files": "\n".join(files) or "(none)",
            "feedback": format_feedback(task, heading="Verification issues to fix"),
        }

    def validate_output(self, context: AgentContext) -> list[str]:
        if not context.knowledge.list_paths(FILES_PREFIX):
            return ["no files were written"]
        return []
