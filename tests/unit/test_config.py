"""Unit tests for configuration loading."""

from pathlib import Path

from buildwright.core.config import AgentLimit, Config


class TestConfig:
    """Tests for defaults and environment overrides."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = Config()

        assert config.orchestrator.max_fix_iterations == 2
        assert config.orchestrator.max_architecture_attempts == 3
        assert config.orchestrator.max_phase_retries == 1
        assert config.orchestrator.confidence_threshold == 0.7
        assert config.resilience.failure_threshold == 3
        assert config.session.rate_limit_per_minute == 10
        assert config.budget.agent_limits["intake"].max_calls == 10
        assert config.budget.default_limit == AgentLimit()

    def test_from_env(self, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("BUILDWRIGHT_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("BUILDWRIGHT_AGENT_PROVIDER", "openai")
        monkeypatch.setenv("BUILDWRIGHT_AGENT_MODEL", "gpt-4o")
        monkeypatch.setenv("BUILDWRIGHT_MAX_COST_USD", "2.5")
        monkeypatch.setenv("BUILDWRIGHT_MAX_ITERATIONS", "20")
        monkeypatch.setenv("BUILDWRIGHT_SKIP_DEPLOYMENT", "TRUE")
        monkeypatch.setenv("BUILDWRIGHT_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("BUILDWRIGHT_OUTPUT_PATH", "/tmp/buildwright")
        monkeypatch.setenv("BUILDWRIGHT_SEARCH_ENDPOINT", "https://search.example.com")
        monkeypatch.setenv("BUILDWRIGHT_WEBHOOK_SECRET", "hush")

        config = Config.from_env()

        assert config.log_level == "DEBUG"
        assert config.agent.provider == "openai"
        assert config.agent.model == "gpt-4o"
        assert config.budget.max_cost_usd == 2.5
        assert config.orchestrator.max_iterations == 20
        assert config.orchestrator.skip_deployment is True
        assert config.storage.backend == "memory"
        assert config.storage.base_path == Path("/tmp/buildwright")
        assert config.search.endpoint == "https://search.example.com"
        assert config.webhook.secret.get_secret_value() == "hush"

    def test_api_keys_from_env(self, monkeypatch):
        """Test that provider keys are read as secrets."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        config = Config()

        assert config.anthropic_api_key.get_secret_value() == "sk-ant-test"
        assert config.openai_api_key is None
        assert "sk-ant-test" not in repr(config)
