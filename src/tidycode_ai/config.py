"""Configuration utilities for the tidycode AI runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .manager import ManagerConfig, ProviderSettings
from .privacy import SCAN_ACTIONS, PrivacyConfig
from .providers import PROVIDER_FACTORIES

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


def _as_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_prefix(provider_id: str) -> str:
    return f"TIDYAI_{provider_id.upper()}"


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration for the provider manager and CLI."""

    active_provider: str
    active_model: Optional[str]
    providers: Dict[str, ProviderSettings]
    ollama_enabled: bool
    privacy: PrivacyConfig
    request_timeout: float
    log_level: str
    metrics_backend: str
    metrics_port: Optional[int]
    gemini_system_exclusions: Tuple[str, ...] = ("thinking",)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        """Build configuration from environment variables."""
        env = os.environ if env is None else env

        active_provider = env.get("TIDYAI_ACTIVE_PROVIDER", "openai").strip().lower()
        if active_provider not in PROVIDER_FACTORIES:
            raise ConfigError(
                f"TIDYAI_ACTIVE_PROVIDER must be one of {', '.join(sorted(PROVIDER_FACTORIES))}"
            )
        active_model = _optional(env, "TIDYAI_ACTIVE_MODEL")
        ollama_enabled = _as_bool(env.get("TIDYAI_OLLAMA_ENABLED", "false"))

        try:
            max_context_chars = int(env.get("TIDYAI_MAX_CONTEXT_CHARS", "0"))
            request_timeout = float(env.get("TIDYAI_REQUEST_TIMEOUT", "60"))
            metrics_port_raw = _optional(env, "TIDYAI_METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        enable_scanning = _as_bool(env.get("TIDYAI_PRIVACY_SCAN", "true"))
        scan_action = env.get("TIDYAI_PRIVACY_ACTION", "block").strip().lower()
        metrics_backend = env.get("TIDYAI_METRICS_BACKEND", "logging").strip().lower()
        log_level = env.get("TIDYAI_LOG_LEVEL", "INFO").strip().upper()
        exclusions = tuple(
            item.strip()
            for item in env.get("TIDYAI_GEMINI_SYSTEM_EXCLUSIONS", "thinking").split(",")
            if item.strip()
        )

        if max_context_chars < 0:
            raise ConfigError("TIDYAI_MAX_CONTEXT_CHARS must be >= 0")
        if request_timeout <= 0:
            raise ConfigError("TIDYAI_REQUEST_TIMEOUT must be > 0")
        if scan_action not in SCAN_ACTIONS:
            raise ConfigError(f"TIDYAI_PRIVACY_ACTION must be one of {', '.join(SCAN_ACTIONS)}")
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("TIDYAI_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("TIDYAI_METRICS_PORT must be >= 0 when provided")
        if logging.getLevelName(log_level) == f"Level {log_level}":
            raise ConfigError(f"TIDYAI_LOG_LEVEL is not a logging level: {log_level}")

        providers: Dict[str, ProviderSettings] = {}
        for provider_id in PROVIDER_FACTORIES:
            prefix = _env_prefix(provider_id)
            settings = ProviderSettings(
                api_key=_optional(env, f"{prefix}_API_KEY"),
                default_model=_optional(env, f"{prefix}_MODEL"),
                base_url=_optional(env, f"{prefix}_BASE_URL"),
            )
            if provider_id == "ollama":
                if not ollama_enabled:
                    continue
                settings = ProviderSettings(
                    default_model=settings.default_model,
                    base_url=settings.base_url or DEFAULT_OLLAMA_URL,
                )
            if not settings.is_empty():
                providers[provider_id] = settings

        return cls(
            active_provider=active_provider,
            active_model=active_model,
            providers=providers,
            ollama_enabled=ollama_enabled,
            privacy=PrivacyConfig(
                enable_scanning=enable_scanning,
                scan_action=scan_action,
                max_context_chars=max_context_chars,
            ),
            request_timeout=request_timeout,
            log_level=log_level,
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
            gemini_system_exclusions=exclusions,
        )

    def to_manager_config(self) -> ManagerConfig:
        return ManagerConfig(
            providers=dict(self.providers),
            active_provider=self.active_provider,
            active_model=self.active_model,
        )

    def provider_options(self) -> Dict[str, Dict[str, Any]]:
        """Factory keyword arguments per provider id."""
        options: Dict[str, Dict[str, Any]] = {
            provider_id: {"timeout": self.request_timeout} for provider_id in PROVIDER_FACTORIES
        }
        options["gemini"]["system_instruction_exclusions"] = self.gemini_system_exclusions
        return options
