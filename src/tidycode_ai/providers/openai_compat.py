"""Adapter for OpenAI-compatible chat completion APIs (OpenAI, Groq, Mistral)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
)

from .base import (
    TEXT_CAPABILITIES,
    BaseProvider,
    CallOptions,
    Capability,
    ChatMessage,
    ChunkCallback,
    CompletionParams,
    CompletionResult,
    ModelInfo,
    ModelStatus,
    ProviderCancelledError,
    ProviderDescriptor,
    ProviderError,
    ProviderNetworkError,
    ProviderRequestError,
    StreamFrame,
    TokenUsage,
)
from .http import classify_status, consume_frames, error_message_from_body, run_cancellable

LOGGER = logging.getLogger("tidycode_ai.providers.openai_compat")

_FINISH_CONFIDENCE = {
    "stop": 0.9,
    "length": 0.6,
    "model_length": 0.5,
    "content_filter": 0.3,
}

OPENAI_MODELS = (
    ModelInfo("gpt-5", "GPT-5", 256000, supports_vision=True, status=ModelStatus.PREVIEW,
              description="Most advanced GPT model (when available)"),
    ModelInfo("gpt-5-mini", "GPT-5 Mini", 128000, supports_vision=True, status=ModelStatus.PREVIEW,
              description="Efficient GPT-5 variant (when available)"),
    ModelInfo("gpt-4o", "GPT-4o", 128000, is_default=True, supports_vision=True,
              description="Most capable current model, multimodal"),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini", 128000, supports_vision=True, description="Fast and cost-effective"),
    ModelInfo("gpt-4-turbo", "GPT-4 Turbo", 128000, supports_vision=True, description="GPT-4 Turbo with vision"),
    ModelInfo("gpt-4", "GPT-4", 8192, description="Original GPT-4 model"),
    ModelInfo("gpt-4-32k", "GPT-4 32K", 32768, description="GPT-4 with extended context"),
    ModelInfo("gpt-3.5-turbo", "GPT-3.5 Turbo", 16385, description="Fast and economical"),
    ModelInfo("o1-preview", "O1 Preview", 128000, status=ModelStatus.PREVIEW, description="Advanced reasoning model"),
    ModelInfo("o1-mini", "O1 Mini", 128000, status=ModelStatus.PREVIEW, description="Fast reasoning model"),
)

GROQ_MODELS = (
    ModelInfo("llama-3.3-70b-versatile", "Llama 3.3 70B", 128000, is_default=True),
    ModelInfo("llama-3.2-90b-vision-preview", "Llama 3.2 90B Vision", 8192, supports_vision=True,
              status=ModelStatus.PREVIEW),
    ModelInfo("llama-3.2-11b-vision-preview", "Llama 3.2 11B Vision", 8192, supports_vision=True,
              status=ModelStatus.PREVIEW),
    ModelInfo("llama-3.1-70b-versatile", "Llama 3.1 70B", 128000),
    ModelInfo("llama-3.1-8b-instant", "Llama 3.1 8B", 128000),
    ModelInfo("mixtral-8x7b-32768", "Mixtral 8x7B", 32768),
    ModelInfo("gemma2-9b-it", "Gemma 2 9B", 8192),
    ModelInfo("deepseek-r1-distill-llama-70b", "DeepSeek R1 Distill 70B", 8192, status=ModelStatus.PREVIEW),
)

MISTRAL_MODELS = (
    ModelInfo("mistral-large-latest", "Mistral Large", 128000, is_default=True),
    ModelInfo("pixtral-large-latest", "Pixtral Large", 128000, supports_vision=True),
    ModelInfo("mistral-medium-latest", "Mistral Medium", 32000),
    ModelInfo("mistral-small-latest", "Mistral Small", 32000),
    ModelInfo("codestral-latest", "Codestral", 32000),
    ModelInfo("codestral-mamba-latest", "Codestral Mamba", 256000),
    ModelInfo("ministral-8b-latest", "Ministral 8B", 128000),
    ModelInfo("open-mistral-nemo", "Mistral Nemo", 128000),
    ModelInfo("open-mixtral-8x22b", "Mixtral 8x22B", 64000),
)


def _confidence_for(finish_reason: Optional[str]) -> float:
    return _FINISH_CONFIDENCE.get(finish_reason or "", 0.7)


def _usage_from(raw: Any) -> Optional[TokenUsage]:
    if raw is None:
        return None
    return TokenUsage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
        total_tokens=getattr(raw, "total_tokens", 0) or 0,
    )


def _decode_chunk(chunk: Any) -> Optional[StreamFrame]:
    """Map one SDK ``ChatCompletionChunk`` to a frame."""
    usage = _usage_from(getattr(chunk, "usage", None))
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return StreamFrame(usage=usage) if usage else None
    choice = choices[0]
    delta = getattr(choice, "delta", None)
    text = getattr(delta, "content", None) or ""
    return StreamFrame(text=text, usage=usage, finish_reason=getattr(choice, "finish_reason", None))


class OpenAICompatibleProvider(BaseProvider):
    """
    Adapter for any vendor speaking the OpenAI chat completions protocol.

    The official SDK handles the ``data:``/``[DONE]`` SSE framing; the
    adapter maps ``choices[0].delta.content`` to deltas and the SDK's
    exceptions to the shared error taxonomy.
    """

    family = "openai-compatible"

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
        min_key_length: Optional[int] = None,
    ):
        super().__init__(descriptor, timeout=timeout)
        self._http_client = http_client
        self._min_key_length = min_key_length
        self._client: Optional[AsyncOpenAI] = None

    async def initialize(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        await super().initialize(api_key=api_key, model=model, base_url=base_url)
        # credentials may have changed
        self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    def validate_api_key_format(self, api_key: Optional[str]) -> bool:
        if self._min_key_length is not None:
            return bool(api_key) and len(api_key) >= self._min_key_length
        return super().validate_api_key_format(api_key)

    def _translate(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, APIStatusError):
            raw_message = error_message_from_body(exc.body) or exc.message
            details = {"status": exc.status_code}
            return classify_status(self.name, exc.status_code, raw_message, details)
        if isinstance(exc, APITimeoutError):
            return ProviderCancelledError(f"Request to {self.name} was cancelled or timed out.")
        if isinstance(exc, APIConnectionError):
            return ProviderNetworkError(
                f"Network error connecting to {self.name}. Check the base URL and your connection.",
                details={"reason": str(exc)},
            )
        if isinstance(exc, APIError):
            return ProviderRequestError(f"{self.name}: {exc.message}")
        return ProviderNetworkError(f"Could not reach {self.name}: {exc}")

    async def validate_config(self) -> Dict[str, Any]:
        if self.requires_api_key and not self.api_key:
            return {"valid": False, "error": "API key is required"}
        try:
            await self.client.models.list()
        except (OpenAIError, httpx.HTTPError) as exc:
            return {"valid": False, "error": self._translate(exc).message}
        return {"valid": True}

    def _completion_messages(self, params: CompletionParams) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.resolve_system_prompt(params)},
            {"role": "user", "content": params.prompt},
        ]

    def _chat_messages(self, messages: Sequence[ChatMessage], options: CallOptions) -> List[Dict[str, str]]:
        system, rest = self.resolve_chat_system_prompt(messages, options)
        payload = [{"role": "system", "content": system}]
        payload.extend({"role": m.role, "content": m.content} for m in rest)
        return payload

    async def _create(self, options: CallOptions, **kwargs: Any) -> Any:
        try:
            return await run_cancellable(
                self.name,
                self.client.chat.completions.create(**kwargs),
                options.signal,
            )
        except OpenAIError as exc:
            raise self._translate(exc) from exc

    def _result(self, response: Any, options: CallOptions) -> CompletionResult:
        choice = response.choices[0]
        text = getattr(choice.message, "content", "") or ""
        return CompletionResult(
            text=self.finalize_text(text, options),
            confidence=self.calculate_confidence(response),
            metadata={
                "provider": self.id,
                "model": response.model,
                "finish_reason": choice.finish_reason,
            },
            usage=_usage_from(response.usage),
        )

    async def _stream(
        self,
        options: CallOptions,
        on_chunk: ChunkCallback,
        model: str,
        **kwargs: Any,
    ) -> CompletionResult:
        stream = await self._create(options, model=model, stream=True, **kwargs)
        try:
            outcome = await consume_frames(stream, _decode_chunk, on_chunk, options.signal)
        except OpenAIError as exc:
            raise self._translate(exc) from exc
        finally:
            await stream.close()
        if outcome.cancelled:
            LOGGER.info("Stream cancelled provider=%s chunks=%s", self.id, outcome.chunks)
        return CompletionResult(
            text=self.finalize_text(outcome.text, options),
            confidence=_confidence_for(outcome.finish_reason) if outcome.finish_reason else None,
            metadata={
                "provider": self.id,
                "model": model,
                "streamed": True,
                "chunks": outcome.chunks,
                "cancelled": outcome.cancelled,
                "finish_reason": outcome.finish_reason,
            },
            usage=outcome.usage,
        )

    async def complete(self, params: CompletionParams) -> CompletionResult:
        self._require_ready()
        response = await self._create(
            params.options,
            model=params.model or self.get_current_model_id(),
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            messages=self._completion_messages(params),
        )
        return self._result(response, params.options)

    async def stream_complete(self, params: CompletionParams, on_chunk: ChunkCallback) -> CompletionResult:
        self._require_ready()
        return await self._stream(
            params.options,
            on_chunk,
            params.model or self.get_current_model_id(),
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            messages=self._completion_messages(params),
        )

    async def chat(self, messages: Sequence[ChatMessage], options: Optional[CallOptions] = None) -> CompletionResult:
        options = options or CallOptions()
        self._require_ready()
        model, max_tokens, temperature = self.chat_settings(options)
        response = await self._create(
            options,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=self._chat_messages(messages, options),
        )
        return self._result(response, options)

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: ChunkCallback,
        options: Optional[CallOptions] = None,
    ) -> CompletionResult:
        options = options or CallOptions()
        self._require_ready()
        model, max_tokens, temperature = self.chat_settings(options)
        return await self._stream(
            options,
            on_chunk,
            model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=self._chat_messages(messages, options),
        )

    def calculate_confidence(self, raw_response: Any) -> float:
        choices = getattr(raw_response, "choices", None) or []
        if not choices:
            return _confidence_for(None)
        return _confidence_for(getattr(choices[0], "finish_reason", None))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def create_openai_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    descriptor = ProviderDescriptor(
        id="openai",
        display_name="OpenAI",
        models=OPENAI_MODELS,
        capabilities=TEXT_CAPABILITIES | {Capability.VISION},
        base_url="https://api.openai.com/v1",
        api_key_prefix="sk-",
    )
    return OpenAICompatibleProvider(descriptor, **kwargs)


def create_groq_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    descriptor = ProviderDescriptor(
        id="groq",
        display_name="Groq",
        models=GROQ_MODELS,
        capabilities=TEXT_CAPABILITIES,
        base_url="https://api.groq.com/openai/v1",
        api_key_prefix="gsk_",
    )
    return OpenAICompatibleProvider(descriptor, **kwargs)


def create_mistral_provider(**kwargs: Any) -> OpenAICompatibleProvider:
    descriptor = ProviderDescriptor(
        id="mistral",
        display_name="Mistral",
        models=MISTRAL_MODELS,
        capabilities=TEXT_CAPABILITIES,
        base_url="https://api.mistral.ai/v1",
    )
    kwargs.setdefault("min_key_length", 20)
    return OpenAICompatibleProvider(descriptor, **kwargs)
