"""
Research Agent.

Gathers background on the domain and candidate technologies and records the
findings for the architect.
"""

from __future__ import annotations

from typing import Any

from ..knowledge import REQUIREMENTS_PATH, RESEARCH_PATH
from .base import KNOWLEDGE_TOOLS, Agent, AgentTask, PromptTemplate, format_document, format_feedback
from .context import AgentContext
from .tools import ToolName


class ResearchAgent(Agent):
    """Researches the problem space before design."""

    NAME = "research"
    DESCRIPTION = "Researches libraries, APIs and prior art for the requirements"
    TOOLS = KNOWLEDGE_TOOLS | {ToolName.WEB_SEARCH, ToolName.WEB_FETCH}
    REQUIRED_OUTPUTS = (RESEARCH_PATH,)

    def get_prompt_template(self) -> PromptTemplate:
        return PromptTemplate(
            template_id="research_v1",
            version="1.0.0",
            system_prompt=f"""You are a Technical Researcher. Given a set of requirements, find the
information an architect needs: suitable libraries and frameworks, relevant APIs,
known pitfalls and examples of similar products.

RULES:
1. Prefer a few targeted web_search calls over many broad ones.
2. If web search is unavailable, rely on your own knowledge and say so.
3. Write your findings with write_knowledge to {RESEARCH_PATH} as JSON with the keys
   "summary", "recommendations" and "sources".
4. Reply with a one-line summary when done.
""",
            user_prompt_template="""## Requirements
{requirements}
{feedback}""",
        )

    def prepare_input(self, task: AgentTask, context: AgentContext) -> dict[str, Any]:
        document = context.knowledge.read(REQUIREMENTS_PATH)
        return {
            "requirements": format_document(document.content if document else None),
            "feedback": format_feedback(task),
        }
