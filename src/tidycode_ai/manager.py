"""Provider registry, routing and the privacy pre-check applied to every call."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .autoselect import Selection, auto_select_provider
from .metrics import CallEvent, LoggingMetricsCollector, MetricsCollector
from .privacy import SCAN_ACTIONS, PrivacyConfig, guard_outgoing
from .providers import PROVIDER_FACTORIES, ProviderFactory
from .providers.base import (
    BaseProvider,
    CallOptions,
    Capability,
    CapabilityError,
    ChatMessage,
    ChunkCallback,
    CompletionParams,
    CompletionResult,
    ModelInfo,
    ProviderError,
    ProviderValidationError,
)

LOGGER = logging.getLogger("tidycode_ai.manager")


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and overrides for one provider."""

    api_key: Optional[str] = None
    default_model: Optional[str] = None
    base_url: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.api_key or self.default_model or self.base_url)


@dataclass(frozen=True)
class ManagerConfig:
    """Initialization map: per-provider settings plus the routing target."""

    providers: Mapping[str, ProviderSettings] = field(default_factory=dict)
    active_provider: Optional[str] = None
    active_model: Optional[str] = None


@dataclass(frozen=True)
class ProviderStatus:
    id: str
    name: str
    models: Tuple[ModelInfo, ...]
    capabilities: FrozenSet[Capability]
    requires_api_key: bool
    is_ready: bool
    is_active: bool
    current_model: str


@dataclass(frozen=True)
class ActiveProviderInfo:
    id: str
    name: str
    model: str
    model_info: Optional[ModelInfo]
    capabilities: FrozenSet[Capability]
    is_ready: bool


class ProviderManager:
    """
    Owns one adapter per known provider and routes calls to the active one.

    Re-initialization builds a complete new registry before swapping it in,
    so callers never observe a mix of adapters configured under old and new
    credentials. Calls already bound to a previous adapter keep running
    against it; adapters dropped by a swap are left to finish and are not
    closed.
    """

    def __init__(
        self,
        *,
        factories: Optional[Mapping[str, ProviderFactory]] = None,
        provider_options: Optional[Mapping[str, Dict[str, Any]]] = None,
        metrics: Optional[MetricsCollector] = None,
        privacy: Optional[PrivacyConfig] = None,
    ) -> None:
        self._factories = dict(factories or PROVIDER_FACTORIES)
        self._provider_options = {key: dict(value) for key, value in (provider_options or {}).items()}
        self._metrics = metrics or LoggingMetricsCollector()
        self.privacy_config = privacy or PrivacyConfig()
        self._providers: Dict[str, BaseProvider] = {}
        self._active_id: Optional[str] = None
        self._active_model: Optional[str] = None
        self._config = ManagerConfig()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # registry -----------------------------------------------------------

    @property
    def config(self) -> ManagerConfig:
        return self._config

    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self, config: ManagerConfig) -> None:
        """Build and configure every adapter, then replace the registry in one step."""
        async with self._init_lock:
            unknown = sorted(set(config.providers) - set(self._factories))
            if unknown:
                raise ProviderValidationError("ProviderManager", f"Unknown provider ids: {', '.join(unknown)}")

            registry: Dict[str, BaseProvider] = {}
            for provider_id, factory in self._factories.items():
                provider = factory(**self._provider_options.get(provider_id, {}))
                settings = config.providers.get(provider_id)
                if settings is not None and not settings.is_empty():
                    if provider.requires_api_key and not settings.api_key:
                        raise ProviderValidationError(provider.name, "API key is required")
                    await provider.initialize(
                        api_key=settings.api_key,
                        model=settings.default_model,
                        base_url=settings.base_url,
                    )
                registry[provider_id] = provider

            active_id = config.active_provider
            if active_id is not None and active_id not in registry:
                raise ProviderValidationError("ProviderManager", f'Provider "{active_id}" not found')

            self._providers = registry
            self._config = config
            self._active_id = None
            self._active_model = None
            if active_id is not None:
                self.set_active_provider(active_id, config.active_model)
            self._initialized = True
            ready = [p.id for p in registry.values() if p.is_ready()]
            LOGGER.info("Providers initialized ready=%s active=%s", ready, self._active_id)

    def register_provider(self, provider: BaseProvider) -> None:
        """Add or replace one adapter without touching the rest of the registry."""
        registry = dict(self._providers)
        registry[provider.id] = provider
        self._providers = registry

    async def unregister_provider(self, provider_id: str) -> None:
        registry = dict(self._providers)
        provider = registry.pop(provider_id, None)
        if provider is None:
            return
        self._providers = registry
        if self._active_id == provider_id:
            self._active_id = None
            self._active_model = None
        await provider.aclose()

    def get_provider(self, provider_id: str) -> Optional[BaseProvider]:
        return self._providers.get(provider_id)

    async def configure_provider(self, provider_id: str, settings: ProviderSettings) -> Dict[str, Any]:
        """Apply credentials to one adapter and probe it; never raises for a bad key."""
        provider = self._providers.get(provider_id)
        if provider is None:
            return {"valid": False, "error": f'Provider "{provider_id}" not found'}
        await provider.initialize(
            api_key=settings.api_key,
            model=settings.default_model,
            base_url=settings.base_url,
        )
        return await provider.validate_config()

    async def validate_active_provider(self) -> Dict[str, Any]:
        provider = self._require_active()
        return await provider.validate_config()

    async def aclose(self) -> None:
        for provider in self._providers.values():
            try:
                await provider.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                LOGGER.debug("Provider cleanup failed for %s", provider.id, exc_info=True)

    # routing ------------------------------------------------------------

    @property
    def active_provider(self) -> Optional[BaseProvider]:
        if self._active_id is None:
            return None
        return self._providers.get(self._active_id)

    @property
    def active_model(self) -> Optional[str]:
        return self._active_model

    def set_active_provider(self, provider_id: str, model_id: Optional[str] = None) -> None:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderValidationError("ProviderManager", f'Provider "{provider_id}" not found')
        if model_id:
            provider.selected_model_id = model_id
        self._active_id = provider_id
        self._active_model = provider.get_current_model_id()
        LOGGER.debug("Active provider set to %s model=%s", provider_id, self._active_model)

    def set_active_model(self, model_id: str) -> None:
        provider = self.active_provider
        if provider is None:
            raise ProviderValidationError("ProviderManager", "No active provider")
        provider.selected_model_id = model_id
        self._active_model = model_id

    def get_available_providers(self) -> List[ProviderStatus]:
        return [
            ProviderStatus(
                id=provider_id,
                name=provider.name,
                models=provider.models,
                capabilities=provider.capabilities,
                requires_api_key=provider.requires_api_key,
                is_ready=provider.is_ready(),
                is_active=provider_id == self._active_id,
                current_model=provider.get_current_model_id(),
            )
            for provider_id, provider in self._providers.items()
        ]

    def get_providers_with_capability(self, capability: Capability) -> List[ProviderStatus]:
        return [p for p in self.get_available_providers() if p.is_ready and capability in p.capabilities]

    def get_active_provider_info(self) -> Optional[ActiveProviderInfo]:
        provider = self.active_provider
        if provider is None:
            return None
        model = self._active_model or provider.get_current_model_id()
        return ActiveProviderInfo(
            id=provider.id,
            name=provider.name,
            model=model,
            model_info=provider.get_model(model),
            capabilities=provider.capabilities,
            is_ready=provider.is_ready(),
        )

    def has_capability(self, capability: Capability) -> bool:
        provider = self.active_provider
        return provider is not None and provider.has_capability(capability)

    def auto_select(self, content_length: int, action_id: Optional[str] = None) -> Optional[Selection]:
        """Pick a provider and model among the ready adapters for ``content_length`` characters."""
        ready = [p for p in self.get_available_providers() if p.is_ready]
        return auto_select_provider(
            content_length=content_length,
            action_id=action_id,
            available_providers=ready,
            active_provider_id=self._active_id,
        )

    def set_privacy_config(self, **changes: Any) -> PrivacyConfig:
        """Merge ``changes`` into the current privacy policy."""
        updated = replace(self.privacy_config, **changes)
        if updated.scan_action not in SCAN_ACTIONS:
            raise ValueError(f"scan_action must be one of {', '.join(SCAN_ACTIONS)}")
        if updated.max_context_chars < 0:
            raise ValueError("max_context_chars must be >= 0")
        self.privacy_config = updated
        return updated

    # calls --------------------------------------------------------------

    def _require_active(self, provider_id: Optional[str] = None) -> BaseProvider:
        if provider_id is not None:
            provider = self._providers.get(provider_id)
            if provider is None:
                raise ProviderValidationError("ProviderManager", f'Provider "{provider_id}" not found')
        else:
            provider = self.active_provider
            if provider is None:
                raise ProviderValidationError(
                    "ProviderManager",
                    "No active AI provider configured. Please select a provider.",
                )
        if not provider.is_ready():
            raise ProviderValidationError(provider.name, "Provider is not ready. Please check your API key.")
        return provider

    def _resolve(
        self,
        operation: Capability,
        require: Sequence[Capability],
        provider_id: Optional[str],
    ) -> BaseProvider:
        provider = self._require_active(provider_id)
        for capability in (operation, *require):
            if not provider.has_capability(capability):
                raise CapabilityError(f"{provider.name} does not support {capability.value}")
        return provider

    def _model_for(self, provider: BaseProvider, requested: Optional[str]) -> str:
        if requested:
            return requested
        if provider.id == self._active_id and self._active_model:
            return self._active_model
        return provider.get_current_model_id()

    def _guard(self, provider: BaseProvider, texts: Sequence[str], options: CallOptions) -> List[str]:
        return guard_outgoing(texts, provider.id, self.privacy_config, allow_secrets=options.allow_secrets)

    def _guard_params(self, provider: BaseProvider, params: CompletionParams) -> CompletionParams:
        options = params.options
        texts = [params.prompt]
        if options.system_prompt:
            texts.append(options.system_prompt)
        guarded = self._guard(provider, texts, options)
        if options.system_prompt:
            options = replace(options, system_prompt=guarded[1])
        return replace(
            params,
            prompt=guarded[0],
            model=self._model_for(provider, params.model),
            options=options,
        )

    def _guard_messages(
        self,
        provider: BaseProvider,
        messages: Sequence[ChatMessage],
        options: CallOptions,
    ) -> Tuple[List[ChatMessage], CallOptions]:
        # assistant turns were produced by the model and are sent unchanged
        outgoing = [i for i, m in enumerate(messages) if m.role in ("system", "user")]
        texts = [messages[i].content for i in outgoing]
        if options.system_prompt:
            texts.append(options.system_prompt)
        guarded = self._guard(provider, texts, options)
        processed = list(messages)
        for position, index in enumerate(outgoing):
            processed[index] = replace(messages[index], content=guarded[position])
        options = replace(
            options,
            model=self._model_for(provider, options.model),
            system_prompt=guarded[-1] if options.system_prompt else None,
        )
        return processed, options

    def _record(
        self,
        provider: BaseProvider,
        model: Optional[str],
        operation: str,
        started: float,
        result: Optional[CompletionResult] = None,
        error: Optional[ProviderError] = None,
    ) -> None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        if error is not None:
            status = "blocked" if error.code == "privacy_block" else "error"
            event = CallEvent(
                provider=provider.id,
                model=model,
                operation=operation,
                status=status,
                duration_ms=duration_ms,
                retryable=error.retryable,
                error_code=error.code,
            )
        else:
            metadata = result.metadata if result is not None else {}
            event = CallEvent(
                provider=provider.id,
                model=model,
                operation=operation,
                status="cancelled" if metadata.get("cancelled") else "success",
                duration_ms=duration_ms,
                chunks=int(metadata.get("chunks") or 0),
            )
        self._metrics.record(event)

    async def complete(
        self,
        params: CompletionParams,
        *,
        require: Sequence[Capability] = (),
        provider_id: Optional[str] = None,
    ) -> CompletionResult:
        provider = self._resolve(Capability.COMPLETION, require, provider_id)
        started = time.perf_counter()
        model = self._model_for(provider, params.model)
        try:
            result = await provider.complete(self._guard_params(provider, params))
        except ProviderError as exc:
            self._record(provider, model, "complete", started, error=exc)
            raise
        self._record(provider, model, "complete", started, result=result)
        return result

    async def stream_complete(
        self,
        params: CompletionParams,
        on_chunk: ChunkCallback,
        *,
        require: Sequence[Capability] = (),
        provider_id: Optional[str] = None,
    ) -> CompletionResult:
        provider = self._resolve(Capability.STREAM, (Capability.COMPLETION, *require), provider_id)
        started = time.perf_counter()
        model = self._model_for(provider, params.model)
        try:
            result = await provider.stream_complete(self._guard_params(provider, params), on_chunk)
        except ProviderError as exc:
            self._record(provider, model, "stream_complete", started, error=exc)
            raise
        self._record(provider, model, "stream_complete", started, result=result)
        return result

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: Optional[CallOptions] = None,
        *,
        require: Sequence[Capability] = (),
        provider_id: Optional[str] = None,
    ) -> CompletionResult:
        options = options or CallOptions()
        provider = self._resolve(Capability.CHAT, require, provider_id)
        started = time.perf_counter()
        model = self._model_for(provider, options.model)
        try:
            processed, call_options = self._guard_messages(provider, messages, options)
            result = await provider.chat(processed, call_options)
        except ProviderError as exc:
            self._record(provider, model, "chat", started, error=exc)
            raise
        self._record(provider, model, "chat", started, result=result)
        return result

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: ChunkCallback,
        options: Optional[CallOptions] = None,
        *,
        require: Sequence[Capability] = (),
        provider_id: Optional[str] = None,
    ) -> CompletionResult:
        options = options or CallOptions()
        provider = self._resolve(Capability.STREAM, (Capability.CHAT, *require), provider_id)
        started = time.perf_counter()
        model = self._model_for(provider, options.model)
        try:
            processed, call_options = self._guard_messages(provider, messages, options)
            result = await provider.stream_chat(processed, on_chunk, call_options)
        except ProviderError as exc:
            self._record(provider, model, "stream_chat", started, error=exc)
            raise
        self._record(provider, model, "stream_chat", started, result=result)
        return result
