"""Tests for runtime configuration handling."""

import pytest

from tidycode_ai.config import DEFAULT_OLLAMA_URL, ConfigError, RuntimeConfig


def _apply_env(monkeypatch, pairs):
    for key, value in pairs.items():
        monkeypatch.setenv(key, value)


def test_config_from_env_with_defaults():
    """An empty environment yields the documented defaults."""
    config = RuntimeConfig.from_env({})

    assert config.active_provider == "openai"
    assert config.active_model is None
    assert config.providers == {}
    assert config.ollama_enabled is False
    assert config.privacy.enable_scanning is True
    assert config.privacy.scan_action == "block"
    assert config.privacy.max_context_chars == 0
    assert config.request_timeout == pytest.approx(60.0)
    assert config.log_level == "INFO"
    assert config.metrics_backend == "logging"
    assert config.metrics_port is None
    assert config.gemini_system_exclusions == ("thinking",)


def test_config_reads_process_environment(monkeypatch):
    """Without an explicit mapping the process environment is used."""
    _apply_env(
        monkeypatch,
        {
            "TIDYAI_ACTIVE_PROVIDER": "Claude",
            "TIDYAI_CLAUDE_API_KEY": "sk-ant-env-key",
        },
    )

    config = RuntimeConfig.from_env()

    assert config.active_provider == "claude"
    assert config.providers["claude"].api_key == "sk-ant-env-key"


def test_config_from_env_overrides():
    """Custom environment values should override defaults."""
    config = RuntimeConfig.from_env(
        {
            "TIDYAI_ACTIVE_PROVIDER": "groq",
            "TIDYAI_ACTIVE_MODEL": "llama-3.1-8b-instant",
            "TIDYAI_GROQ_API_KEY": "gsk_test",
            "TIDYAI_GROQ_BASE_URL": "https://proxy.internal/openai/v1",
            "TIDYAI_GEMINI_MODEL": "gemini-1.5-pro",
            "TIDYAI_OPENAI_API_KEY": "   ",
            "TIDYAI_PRIVACY_SCAN": "false",
            "TIDYAI_PRIVACY_ACTION": "redact",
            "TIDYAI_MAX_CONTEXT_CHARS": "20000",
            "TIDYAI_REQUEST_TIMEOUT": "15.5",
            "TIDYAI_LOG_LEVEL": "debug",
            "TIDYAI_METRICS_BACKEND": "prometheus",
            "TIDYAI_METRICS_PORT": "9100",
            "TIDYAI_GEMINI_SYSTEM_EXCLUSIONS": "thinking, reasoner",
        }
    )

    assert config.active_provider == "groq"
    assert config.active_model == "llama-3.1-8b-instant"
    assert config.providers["groq"].api_key == "gsk_test"
    assert config.providers["groq"].base_url == "https://proxy.internal/openai/v1"
    assert config.providers["gemini"].default_model == "gemini-1.5-pro"
    assert "openai" not in config.providers
    assert config.privacy.enable_scanning is False
    assert config.privacy.scan_action == "redact"
    assert config.privacy.max_context_chars == 20000
    assert config.request_timeout == pytest.approx(15.5)
    assert config.log_level == "DEBUG"
    assert config.metrics_backend == "prometheus"
    assert config.metrics_port == 9100
    assert config.gemini_system_exclusions == ("thinking", "reasoner")


def test_ollama_is_configured_only_when_enabled():
    disabled = RuntimeConfig.from_env({"TIDYAI_OLLAMA_MODEL": "llama3.2:latest"})
    enabled = RuntimeConfig.from_env({"TIDYAI_OLLAMA_ENABLED": "yes", "TIDYAI_OLLAMA_API_KEY": "ignored"})

    assert "ollama" not in disabled.providers
    assert enabled.providers["ollama"].base_url == DEFAULT_OLLAMA_URL
    assert enabled.providers["ollama"].api_key is None


def test_manager_config_and_provider_options():
    config = RuntimeConfig.from_env(
        {
            "TIDYAI_ACTIVE_PROVIDER": "gemini",
            "TIDYAI_GEMINI_API_KEY": "AI" + "k" * 37,
            "TIDYAI_REQUEST_TIMEOUT": "30",
        }
    )

    manager_config = config.to_manager_config()
    options = config.provider_options()

    assert manager_config.active_provider == "gemini"
    assert manager_config.providers["gemini"].api_key == "AI" + "k" * 37
    assert options["claude"] == {"timeout": 30.0}
    assert options["gemini"]["system_instruction_exclusions"] == ("thinking",)


@pytest.mark.parametrize(
    "env, key",
    [
        ({"TIDYAI_ACTIVE_PROVIDER": "watson"}, "TIDYAI_ACTIVE_PROVIDER"),
        ({"TIDYAI_MAX_CONTEXT_CHARS": "-1"}, "TIDYAI_MAX_CONTEXT_CHARS"),
        ({"TIDYAI_REQUEST_TIMEOUT": "0"}, "TIDYAI_REQUEST_TIMEOUT"),
        ({"TIDYAI_PRIVACY_ACTION": "ignore"}, "TIDYAI_PRIVACY_ACTION"),
        ({"TIDYAI_METRICS_BACKEND": "statsd"}, "TIDYAI_METRICS_BACKEND"),
        ({"TIDYAI_METRICS_PORT": "-5"}, "TIDYAI_METRICS_PORT"),
        ({"TIDYAI_LOG_LEVEL": "LOUD"}, "TIDYAI_LOG_LEVEL"),
    ],
)
def test_config_validation_bounds(env, key):
    """Invalid values should raise an explicit ConfigError naming the variable."""
    with pytest.raises(ConfigError) as exc:
        RuntimeConfig.from_env(env)

    assert key in str(exc.value)


def test_config_rejects_non_numeric_values():
    with pytest.raises(ConfigError) as exc:
        RuntimeConfig.from_env({"TIDYAI_REQUEST_TIMEOUT": "soon"})

    assert "Invalid numeric configuration" in str(exc.value)
