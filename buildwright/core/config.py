"""
Configuration management for Buildwright.

Provides centralized, type-safe configuration with environment variable overrides
and sensible defaults for the orchestrator, agents and resilience primitives.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr

# Load .env file if it exists (looks in cwd and parent directories)
load_dotenv()


def _env_secret(name: str) -> SecretStr | None:
    value = os.environ.get(name)
    return SecretStr(value) if value else None


class AgentConfig(BaseModel):
    """LLM agent configuration."""

    provider: Literal["anthropic", "openai", "azure_openai"] = Field(
        default="anthropic", description="LLM provider"
    )
    # Azure OpenAI specific settings
    azure_endpoint: str | None = Field(default=None, description="Azure OpenAI endpoint URL")
    azure_api_version: str = Field(default="2024-02-15-preview", description="Azure OpenAI API version")
    azure_deployment_name: str | None = Field(default=None, description="Azure OpenAI deployment name")
    model: str = Field(default="claude-sonnet-4-5", description="Model identifier")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=8192, ge=256, description="Max output tokens per call")
    timeout_seconds: int = Field(default=120, ge=10, description="Request timeout")


class AgentLimit(BaseModel):
    """Per-agent call and token allowance."""

    max_calls: int = Field(default=30, ge=1, description="Model calls allowed per run")
    max_tokens: int = Field(default=400_000, ge=1, description="Tokens allowed per run")
    model: str | None = Field(default=None, description="Model override for this agent")


class BudgetConfig(BaseModel):
    """Budget enforcement configuration."""

    default_limit: AgentLimit = Field(default_factory=AgentLimit)
    agent_limits: dict[str, AgentLimit] = Field(
        default_factory=lambda: {
            "intake": AgentLimit(max_calls=10, max_tokens=100_000),
            "research": AgentLimit(max_calls=15, max_tokens=200_000),
            "architect": AgentLimit(max_calls=15, max_tokens=200_000),
            "builder": AgentLimit(max_calls=40, max_tokens=800_000),
            "verifier": AgentLimit(max_calls=15, max_tokens=300_000),
            "deployer": AgentLimit(max_calls=5, max_tokens=50_000),
        },
        description="Limits keyed by agent name",
    )
    max_cost_usd: float | None = Field(default=None, ge=0.0, description="Session cost ceiling")


class KnowledgeConfig(BaseModel):
    """Knowledge store configuration."""

    max_content_bytes: int = Field(default=1_048_576, ge=1, description="Per-document size ceiling")
    default_limit: int = Field(default=10, ge=1, description="Default search result limit")
    default_min_relevance: float = Field(default=0.0, ge=0.0, le=1.0)


class ResilienceConfig(BaseModel):
    """Circuit breaker and retry configuration."""

    failure_threshold: int = Field(default=3, ge=1, description="Failures before the circuit opens")
    reset_timeout_seconds: float = Field(default=30.0, ge=0.0, description="Open-state cooldown")
    max_attempts: int = Field(default=3, ge=1, description="Total attempts per outbound call")
    base_delay_seconds: float = Field(default=1.0, ge=0.0, description="First backoff delay")
    max_delay_seconds: float = Field(default=30.0, ge=0.0, description="Backoff ceiling")


class OrchestratorConfig(BaseModel):
    """Phase state machine configuration."""

    max_iterations: int = Field(default=50, ge=1, description="Tool loop iteration ceiling")
    ask_user_timeout_seconds: float = Field(default=120.0, gt=0.0)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_architecture_attempts: int = Field(default=3, ge=1)
    max_fix_iterations: int = Field(default=2, ge=0)
    max_phase_retries: int = Field(default=1, ge=0)
    skip_research: bool = Field(default=False)
    skip_deployment: bool = Field(default=False)
    checkpoint_enabled: bool = Field(default=True, description="Snapshot knowledge at phase boundaries")


class SessionConfig(BaseModel):
    """Session lifetime configuration."""

    completion_grace_seconds: float = Field(default=300.0, ge=0.0)
    max_age_seconds: float = Field(default=3600.0, gt=0.0)
    sweep_interval_seconds: float = Field(default=30.0, gt=0.0, description="Seconds between eviction sweeps")
    rate_limit_per_minute: int = Field(default=10, ge=1, description="Generation starts per user")


class StorageConfig(BaseModel):
    """Storage configuration for checkpoints and deployments."""

    backend: Literal["local", "memory"] = Field(default="local", description="Storage backend")
    base_path: Path = Field(default=Path("./output"), description="Base path for local storage")


class SearchConfig(BaseModel):
    """Web research capability configuration."""

    endpoint: str | None = Field(default=None, description="JSON search API endpoint")
    api_key: SecretStr | None = Field(default=None, description="Search API key")
    timeout_seconds: float = Field(default=20.0, gt=0.0)
    max_fetch_chars: int = Field(default=20_000, ge=1, description="Page text returned by web_fetch")


class WebhookConfig(BaseModel):
    """Workflow engine callback configuration."""

    secret: SecretStr | None = Field(default=None, description="HMAC secret for callbacks")


class Config(BaseModel):
    """Root configuration for Buildwright."""

    project_name: str = Field(default="Buildwright", description="Project identifier")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["auto", "console", "json"] = Field(
        default="auto", description="Log renderer; auto picks console on a TTY and JSON otherwise"
    )
    agent: AgentConfig = Field(default_factory=AgentConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)

    # API Keys (loaded from environment)
    openai_api_key: SecretStr | None = Field(
        default_factory=lambda: _env_secret("OPENAI_API_KEY")
    )
    anthropic_api_key: SecretStr | None = Field(
        default_factory=lambda: _env_secret("ANTHROPIC_API_KEY")
    )

    model_config = {"extra": "ignore"}

    @classmethod
    def from_env(cls) -> Config:
        """Create configuration from environment variables."""
        max_cost = os.environ.get("BUILDWRIGHT_MAX_COST_USD")
        return cls(
            log_level=os.environ.get("BUILDWRIGHT_LOG_LEVEL", "INFO"),  # type: ignore
            log_format=os.environ.get("BUILDWRIGHT_LOG_FORMAT", "auto"),  # type: ignore
            agent=AgentConfig(
                provider=os.environ.get("BUILDWRIGHT_AGENT_PROVIDER", "anthropic"),  # type: ignore
                model=os.environ.get("BUILDWRIGHT_AGENT_MODEL", "claude-sonnet-4-5"),
                temperature=float(os.environ.get("BUILDWRIGHT_AGENT_TEMPERATURE", "0.2")),
                azure_endpoint=os.environ.get("AZURE_OPENAI_ENDPOINT"),
                azure_api_version=os.environ.get("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                azure_deployment_name=os.environ.get("AZURE_OPENAI_DEPLOYMENT_NAME"),
            ),
            budget=BudgetConfig(
                max_cost_usd=float(max_cost) if max_cost else None,
            ),
            orchestrator=OrchestratorConfig(
                max_iterations=int(os.environ.get("BUILDWRIGHT_MAX_ITERATIONS", "50")),
                skip_deployment=os.environ.get("BUILDWRIGHT_SKIP_DEPLOYMENT", "false").lower() == "true",
            ),
            storage=StorageConfig(
                backend=os.environ.get("BUILDWRIGHT_STORAGE_BACKEND", "local"),  # type: ignore
                base_path=Path(os.environ.get("BUILDWRIGHT_OUTPUT_PATH", "./output")),
            ),
            search=SearchConfig(
                endpoint=os.environ.get("BUILDWRIGHT_SEARCH_ENDPOINT"),
                api_key=_env_secret("BUILDWRIGHT_SEARCH_API_KEY"),
            ),
            webhook=WebhookConfig(secret=_env_secret("BUILDWRIGHT_WEBHOOK_SECRET")),
        )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.from_env()
