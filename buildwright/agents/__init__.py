"""Phase agents and the runtime they share."""

from .architect import ArchitectAgent
from .base import Agent, AgentResult, AgentTask, PromptTemplate
from .builder import BuilderAgent
from .context import AgentContext
from .deployer import DeployerAgent
from .intake import IntakeAgent
from .llm import (
    AnthropicLanguageModel,
    LanguageModel,
    LLMResponse,
    Message,
    OpenAILanguageModel,
    TextBlock,
    ToolResultBlock,
    ToolSchema,
    ToolUseBlock,
    create_language_model,
)
from .research import ResearchAgent
from .router import ToolRouter, confidence_score
from .tools import TOOL_SPECS, ToolName, ToolResult
from .verifier import VerifierAgent

__all__ = [
    "Agent",
    "AgentContext",
    "AgentResult",
    "AgentTask",
    "PromptTemplate",
    "ArchitectAgent",
    "BuilderAgent",
    "DeployerAgent",
    "IntakeAgent",
    "ResearchAgent",
    "VerifierAgent",
    "AnthropicLanguageModel",
    "LanguageModel",
    "LLMResponse",
    "Message",
    "OpenAILanguageModel",
    "TextBlock",
    "ToolResultBlock",
    "ToolSchema",
    "ToolUseBlock",
    "create_language_model",
    "TOOL_SPECS",
    "ToolName",
    "ToolResult",
    "ToolRouter",
    "confidence_score",
]
