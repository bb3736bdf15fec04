"""Adapter for the Anthropic messages API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .base import (
    TEXT_CAPABILITIES,
    CallOptions,
    Capability,
    ChatMessage,
    ChunkCallback,
    CompletionParams,
    CompletionResult,
    ModelInfo,
    ModelStatus,
    ProviderDescriptor,
    ProviderError,
    StreamFrame,
    TokenUsage,
)
from .http import HttpxProvider, loads_or_none, sse_data

ANTHROPIC_VERSION = "2023-06-01"
VALIDATION_MODEL = "claude-3-haiku-20240307"

_STOP_CONFIDENCE = {
    "end_turn": 0.9,
    "stop_sequence": 0.85,
    "max_tokens": 0.6,
}

CLAUDE_MODELS = (
    ModelInfo("claude-4-opus", "Claude 4 Opus", 200000, supports_vision=True, status=ModelStatus.PREVIEW,
              description="Most capable Claude 4 model for complex tasks"),
    ModelInfo("claude-4-sonnet", "Claude 4 Sonnet", 200000, supports_vision=True, status=ModelStatus.PREVIEW,
              description="Balanced Claude 4 model"),
    ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", 200000, is_default=True, supports_vision=True,
              description="Best balance of intelligence and speed"),
    ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", 200000, supports_vision=True,
              description="Fast and efficient for simple tasks"),
    ModelInfo("claude-3-opus-20240229", "Claude 3 Opus", 200000, supports_vision=True,
              description="Most capable Claude 3 model"),
    ModelInfo("claude-3-haiku-20240307", "Claude 3 Haiku", 200000, supports_vision=True,
              description="Fast Claude 3 model"),
)


def _confidence_for(stop_reason: Optional[str]) -> float:
    return _STOP_CONFIDENCE.get(stop_reason or "", 0.7)


def _usage_from(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    prompt = raw.get("input_tokens") or 0
    completion = raw.get("output_tokens") or 0
    return TokenUsage(prompt, completion, prompt + completion)


class _MessageStreamDecoder:
    """
    Decodes typed SSE events for a single streaming call.

    ``message_start`` reports input tokens and ``message_delta`` reports
    output tokens plus the stop reason, so the decoder keeps the input
    count between frames. One instance per call.
    """

    def __init__(self) -> None:
        self.input_tokens = 0

    def __call__(self, line: str) -> Optional[StreamFrame]:
        data = sse_data(line)
        if not data:
            return None
        event = loads_or_none(data)
        if event is None:
            return None
        kind = event.get("type")
        if kind == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            self.input_tokens = usage.get("input_tokens") or 0
            return None
        if kind == "content_block_delta":
            return StreamFrame(text=(event.get("delta") or {}).get("text") or "")
        if kind == "message_delta":
            output = (event.get("usage") or {}).get("output_tokens") or 0
            usage = TokenUsage(self.input_tokens, output, self.input_tokens + output)
            stop_reason = (event.get("delta") or {}).get("stop_reason")
            return StreamFrame(usage=usage, finish_reason=stop_reason)
        if kind == "message_stop":
            return StreamFrame(done=True)
        return None


class ClaudeProvider(HttpxProvider):
    """Anthropic-style adapter: ``x-api-key`` auth and a dedicated ``system`` field."""

    family = "anthropic"

    def request_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": self.descriptor.api_version or ANTHROPIC_VERSION,
        }

    async def validate_config(self) -> Dict[str, Any]:
        if not self.api_key:
            return {"valid": False, "error": "API key is required"}
        payload = {
            "model": VALIDATION_MODEL,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        }
        try:
            await self._post("/messages", payload, None)
        except ProviderError as exc:
            return {"valid": False, "error": exc.message}
        return {"valid": True}

    def _payload(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": messages,
        }

    def _completion_payload(self, params: CompletionParams) -> Dict[str, Any]:
        return self._payload(
            params.model or self.get_current_model_id(),
            self.resolve_system_prompt(params),
            [{"role": "user", "content": params.prompt}],
            params.max_tokens,
            params.temperature,
        )

    def _chat_payload(self, messages: Sequence[ChatMessage], options: CallOptions) -> Dict[str, Any]:
        system, rest = self.resolve_chat_system_prompt(messages, options)
        model, max_tokens, temperature = self.chat_settings(options)
        return self._payload(
            model,
            system,
            [{"role": m.role, "content": m.content} for m in rest],
            max_tokens,
            temperature,
        )

    def _result(self, response: Dict[str, Any], options: CallOptions) -> CompletionResult:
        content = response.get("content") or []
        text = content[0].get("text", "") if content else ""
        return CompletionResult(
            text=self.finalize_text(text or "", options),
            confidence=self.calculate_confidence(response),
            metadata={
                "provider": self.id,
                "model": response.get("model"),
                "finish_reason": response.get("stop_reason"),
            },
            usage=_usage_from(response.get("usage")),
        )

    async def _send(self, payload: Dict[str, Any], options: CallOptions) -> CompletionResult:
        self._require_ready()
        response = await self._post("/messages", payload, options.signal)
        return self._result(response, options)

    async def _send_stream(self, payload: Dict[str, Any], on_chunk: ChunkCallback, options: CallOptions) -> CompletionResult:
        self._require_ready()
        payload["stream"] = True
        outcome = await self._stream("/messages", payload, _MessageStreamDecoder(), on_chunk, options.signal)
        confidence = _confidence_for(outcome.finish_reason) if outcome.finish_reason else None
        return self.streamed_result(outcome, options, payload["model"], confidence)

    async def complete(self, params: CompletionParams) -> CompletionResult:
        return await self._send(self._completion_payload(params), params.options)

    async def stream_complete(self, params: CompletionParams, on_chunk: ChunkCallback) -> CompletionResult:
        return await self._send_stream(self._completion_payload(params), on_chunk, params.options)

    async def chat(self, messages: Sequence[ChatMessage], options: Optional[CallOptions] = None) -> CompletionResult:
        options = options or CallOptions()
        return await self._send(self._chat_payload(messages, options), options)

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: ChunkCallback,
        options: Optional[CallOptions] = None,
    ) -> CompletionResult:
        options = options or CallOptions()
        return await self._send_stream(self._chat_payload(messages, options), on_chunk, options)

    def calculate_confidence(self, raw_response: Any) -> float:
        if not isinstance(raw_response, dict):
            return _confidence_for(None)
        return _confidence_for(raw_response.get("stop_reason"))


def create_claude_provider(**kwargs: Any) -> ClaudeProvider:
    descriptor = ProviderDescriptor(
        id="claude",
        display_name="Claude",
        models=CLAUDE_MODELS,
        capabilities=TEXT_CAPABILITIES | {Capability.VISION},
        base_url="https://api.anthropic.com/v1",
        api_key_prefix="sk-ant-",
        api_version=ANTHROPIC_VERSION,
    )
    return ClaudeProvider(descriptor, **kwargs)
