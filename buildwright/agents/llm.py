"""
Language model abstraction.

Agents talk to a provider-neutral ``LanguageModel``: a system prompt, the
tool schemas the agent may call and the conversation transcript go in, a list
of content blocks (text and tool invocations) comes out. Provider SDKs are
imported lazily so that tests and offline tooling never need them.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from ..core.config import AgentConfig, Config
from ..core.exceptions import AgentError, ProviderError
from ..core.logging import get_logger
from ..core.types import TokenUsage

logger = get_logger(__name__)


class TextBlock(BaseModel):
    """Free text produced by the model."""

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The outcome of a tool invocation, fed back to the model."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock, ToolResultBlock], Field(discriminator="type")]


class Message(BaseModel):
    """One turn of the transcript."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]

    def blocks(self) -> list[ContentBlock]:
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)]
        return list(self.content)


class ToolSchema(BaseModel):
    """Provider-neutral description of a callable tool."""

    name: str
    description: str
    input_schema: dict[str, Any]


class LLMResponse(BaseModel):
    """A single model completion."""

    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str = "end_turn"
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class LanguageModel(ABC):
    """Interface every model adapter implements."""

    @property
    @abstractmethod
    def provider(self) -> str:
        ...

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        tools: Sequence[ToolSchema],
        transcript: Sequence[Message],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Produce the next assistant turn.

        Args:
            system_prompt: Agent instructions.
            tools: Tools the model may invoke.
            transcript: Conversation so far, starting with a user turn.
            model: Model override; the adapter default is used when omitted.
            max_tokens: Output token ceiling override.
            temperature: Sampling temperature override.

        Returns:
            LLMResponse: Content blocks, stop reason and token usage.

        Raises:
            ProviderError: If the provider rejects or fails the request.
        """
        ...


class AnthropicLanguageModel(LanguageModel):
    """Adapter for the Anthropic Messages API."""

    def __init__(self, config: AgentConfig, api_key: str | None = None, client: Any = None) -> None:
        self.config = config
        self._api_key = api_key
        self._client = client

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or None,
                timeout=self.config.timeout_seconds,
            )
        return self._client

    async def complete(
        self,
        system_prompt: str,
        tools: Sequence[ToolSchema],
        transcript: Sequence[Message],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        import anthropic

        client = self._get_client()
        model_name = model or self.config.model
        request: dict[str, Any] = {
            "model": model_name,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature if temperature is None else temperature,
            "system": system_prompt,
            "messages": [m.model_dump(mode="json") for m in transcript],
        }
        if tools:
            request["tools"] = [t.model_dump() for t in tools]

        logger.debug("LLM request starting", provider=self.provider, model=model_name, turns=len(transcript))
        try:
            response = await client.messages.create(**request)
        except anthropic.APIStatusError as e:
            raise ProviderError(
                message=f"Anthropic request failed: {e}",
                service_name=self.provider,
                operation="messages.create",
                status_code=e.status_code,
                cause=e,
            )
        except (anthropic.APIConnectionError, anthropic.APITimeoutError) as e:
            raise ProviderError(
                message=f"Anthropic connection failed: {e}",
                service_name=self.provider,
                operation="messages.create",
                retryable=True,
                cause=e,
            )

        blocks: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        logger.debug(
            "LLM response received",
            provider=self.provider,
            model=model_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return LLMResponse(
            content=blocks,
            stop_reason=response.stop_reason or "end_turn",
            usage=usage,
            model=model_name,
        )


_OPENAI_STOP_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
}


def to_openai_messages(system_prompt: str, transcript: Sequence[Message]) -> list[dict[str, Any]]:
    """Translate the block transcript into chat-completions messages.

    Tool results become ``tool`` role messages and tool invocations become
    ``tool_calls`` on the assistant message that requested them.
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in transcript:
        blocks = message.blocks()
        if message.role == "assistant":
            text = "\n".join(b.text for b in blocks if isinstance(b, TextBlock))
            calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input)},
                }
                for b in blocks
                if isinstance(b, ToolUseBlock)
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if calls:
                entry["tool_calls"] = calls
            messages.append(entry)
            continue

        for block in blocks:
            if isinstance(block, ToolResultBlock):
                messages.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": block.content})
        text = "\n".join(b.text for b in blocks if isinstance(b, TextBlock))
        if text:
            messages.append({"role": "user", "content": text})
    return messages


class OpenAILanguageModel(LanguageModel):
    """Adapter for OpenAI and Azure OpenAI chat completions."""

    def __init__(self, config: AgentConfig, api_key: str | None = None, client: Any = None) -> None:
        self.config = config
        self._api_key = api_key
        self._client = client

    @property
    def provider(self) -> str:
        return self.config.provider

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        import openai

        if self.config.provider == "azure_openai":
            self._client = openai.AsyncAzureOpenAI(
                azure_endpoint=self.config.azure_endpoint,
                api_version=self.config.azure_api_version,
                api_key=self._api_key or None,
                timeout=self.config.timeout_seconds,
            )
        else:
            self._client = openai.AsyncOpenAI(api_key=self._api_key or None, timeout=self.config.timeout_seconds)
        return self._client

    def _model_name(self, model: str | None) -> str:
        # Azure routes by deployment name rather than model id
        if self.config.provider == "azure_openai" and self.config.azure_deployment_name:
            return self.config.azure_deployment_name
        return model or self.config.model

    async def complete(
        self,
        system_prompt: str,
        tools: Sequence[ToolSchema],
        transcript: Sequence[Message],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        import openai

        client = self._get_client()
        model_name = self._model_name(model)
        request: dict[str, Any] = {
            "model": model_name,
            "messages": to_openai_messages(system_prompt, transcript),
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_completion_tokens": max_tokens or self.config.max_tokens,
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.input_schema},
                }
                for t in tools
            ]

        logger.debug("LLM request starting", provider=self.provider, model=model_name, turns=len(transcript))
        try:
            response = await client.chat.completions.create(**request)
        except openai.APIStatusError as e:
            raise ProviderError(
                message=f"OpenAI request failed: {e}",
                service_name=self.provider,
                operation="chat.completions.create",
                status_code=e.status_code,
                cause=e,
            )
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise ProviderError(
                message=f"OpenAI connection failed: {e}",
                service_name=self.provider,
                operation="chat.completions.create",
                retryable=True,
                cause=e,
            )

        if not response.choices:
            raise ProviderError(
                message="OpenAI returned no choices",
                service_name=self.provider,
                operation="chat.completions.create",
                retryable=True,
            )
        choice = response.choices[0]
        blocks: list[ContentBlock] = []
        if choice.message.content:
            blocks.append(TextBlock(text=choice.message.content))
        for call in choice.message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                # Surfaced to the model as an argument validation failure
                arguments = {"_unparsed_arguments": call.function.arguments}
            if not isinstance(arguments, dict):
                arguments = {"_unparsed_arguments": arguments}
            blocks.append(ToolUseBlock(id=call.id, name=call.function.name, input=arguments))

        usage = TokenUsage(
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )
        logger.debug(
            "LLM response received",
            provider=self.provider,
            model=model_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            finish_reason=choice.finish_reason,
        )
        return LLMResponse(
            content=blocks,
            stop_reason=_OPENAI_STOP_REASONS.get(choice.finish_reason or "stop", "end_turn"),
            usage=usage,
            model=model_name,
        )


def create_language_model(config: Config) -> LanguageModel:
    """Build the adapter for the configured provider.

    Raises:
        AgentError: If the configured provider is unknown.
    """
    agent_config = config.agent
    if agent_config.provider == "anthropic":
        key = config.anthropic_api_key.get_secret_value() if config.anthropic_api_key else None
        return AnthropicLanguageModel(agent_config, api_key=key)
    if agent_config.provider in ("openai", "azure_openai"):
        key = config.openai_api_key.get_secret_value() if config.openai_api_key else None
        return OpenAILanguageModel(agent_config, api_key=key)
    raise AgentError(
        message=f"Unknown provider: {agent_config.provider}",
        operation="create_language_model",
    )
