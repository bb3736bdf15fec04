"""Wire configuration, metrics, providers and actions together."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .actions import ActionManager, register_default_actions
from .config import RuntimeConfig
from .manager import ProviderManager
from .metrics import LoggingMetricsCollector, MetricsCollector, PrometheusMetricsCollector
from .privacy import PrivacySession

LOGGER = logging.getLogger("tidycode_ai.runtime")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def create_metrics_collector(config: RuntimeConfig) -> MetricsCollector:
    if config.metrics_backend == "prometheus":
        return PrometheusMetricsCollector(port=config.metrics_port)
    return LoggingMetricsCollector()


class AIRuntime:
    """Own the provider manager and action manager for one session."""

    def __init__(
        self,
        *,
        config: RuntimeConfig,
        provider_manager: Optional[ProviderManager] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        logging.getLogger("tidycode_ai").setLevel(_level_for(config.log_level))

        if provider_manager is None:
            provider_manager = ProviderManager(
                provider_options=config.provider_options(),
                metrics=metrics or create_metrics_collector(config),
                privacy=config.privacy,
            )
        self.provider_manager = provider_manager
        self.actions = register_default_actions(ActionManager(provider_manager))
        self.privacy_session = PrivacySession()
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.provider_manager.initialize(self.config.to_manager_config())
        self._started = True
        LOGGER.info("Runtime started with active provider=%s", self.config.active_provider)

    async def stop(self) -> None:
        if not self._started:
            return
        try:
            await self.provider_manager.aclose()
        finally:
            self._started = False
            LOGGER.info("Runtime stopped")

    async def __aenter__(self) -> "AIRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


async def perform_validation(config: RuntimeConfig) -> Dict[str, Any]:
    """Probe the active provider with its side-effect free validation call."""
    async with AIRuntime(config=config) as runtime:
        return await runtime.provider_manager.validate_active_provider()
