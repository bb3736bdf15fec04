"""Adapter for the Google generateContent API."""

from __future__ import annotations

from dataclasses import replace
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

DEFAULT_SYSTEM_EXCLUSIONS = ("thinking",)

_FINISH_CONFIDENCE = {
    "STOP": 0.9,
    "MAX_TOKENS": 0.6,
    "SAFETY": 0.3,
    "RECITATION": 0.5,
}

GEMINI_MODELS = (
    ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", 1000000, is_default=True, supports_vision=True,
              description="Fast and versatile, 1M token context"),
    ModelInfo("gemini-2.0-flash-thinking", "Gemini 2.0 Flash Thinking", 1000000, supports_vision=True,
              status=ModelStatus.PREVIEW, description="Enhanced reasoning capabilities"),
    ModelInfo("gemini-2.0-pro", "Gemini 2.0 Pro", 2000000, supports_vision=True, status=ModelStatus.PREVIEW,
              description="Most capable Gemini 2.0 model"),
    ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", 2000000, supports_vision=True,
              description="2M token context, highly capable"),
    ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", 1000000, supports_vision=True,
              description="Fast and efficient"),
    ModelInfo("gemini-1.5-flash-8b", "Gemini 1.5 Flash 8B", 1000000, supports_vision=True,
              description="Smaller, faster Flash variant"),
    ModelInfo("gemini-1.0-pro", "Gemini 1.0 Pro", 32768, description="Legacy Gemini Pro model"),
)


def _confidence_for(finish_reason: Optional[str]) -> float:
    return _FINISH_CONFIDENCE.get(finish_reason or "", 0.7)


def _first_candidate(payload: Dict[str, Any]) -> Dict[str, Any]:
    candidates = payload.get("candidates") or []
    return candidates[0] if candidates else {}


def _candidate_text(candidate: Dict[str, Any]) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    if not parts:
        return ""
    return parts[0].get("text") or ""


def _usage_from(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    prompt = raw.get("promptTokenCount") or 0
    completion = raw.get("candidatesTokenCount") or 0
    return TokenUsage(prompt, completion, raw.get("totalTokenCount") or prompt + completion)


def _strip_array_framing(line: str) -> str:
    """Reduce one line of a bare streamed JSON array to a single object."""
    text = line.strip().lstrip(",").strip()
    if text.startswith("["):
        text = text[1:].strip()
    if text.endswith("]") and not text.endswith("}]"):
        text = text[:-1].strip()
    elif text.endswith("}]"):
        text = text[:-1]
    return text.rstrip(",").strip()


def decode_stream_line(line: str) -> Optional[StreamFrame]:
    """
    Decode one line of a ``streamGenerateContent`` body.

    Accepts SSE ``data:`` lines as well as the bare JSON array returned
    when the ``alt=sse`` flag is not honoured; array brackets and
    separating commas are stripped before parsing.
    """
    stripped = line.strip()
    if not stripped:
        return None
    data = sse_data(stripped)
    if data is None:
        data = _strip_array_framing(stripped)
    if not data:
        return None
    payload = loads_or_none(data)
    if payload is None:
        return None
    candidate = _first_candidate(payload)
    return StreamFrame(
        text=_candidate_text(candidate),
        usage=_usage_from(payload.get("usageMetadata")),
        finish_reason=candidate.get("finishReason"),
    )


class GeminiProvider(HttpxProvider):
    """Google-style adapter with role renaming and an optional ``systemInstruction``."""

    family = "google"

    def __init__(self, descriptor: ProviderDescriptor, *, system_instruction_exclusions: Optional[Sequence[str]] = None, **kwargs: Any):
        if system_instruction_exclusions is not None:
            descriptor = replace(descriptor, system_instruction_exclusions=tuple(system_instruction_exclusions))
        super().__init__(descriptor, **kwargs)

    def request_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key or ""}

    def validate_api_key_format(self, api_key: Optional[str]) -> bool:
        return bool(api_key) and len(api_key) >= 30

    def supports_system_instruction(self, model_id: Optional[str]) -> bool:
        if not model_id:
            return True
        lowered = model_id.lower()
        return not any(marker in lowered for marker in self.descriptor.system_instruction_exclusions)

    def _path(self, model_id: str, stream: bool) -> str:
        if stream:
            return f"/models/{model_id}:streamGenerateContent?alt=sse"
        return f"/models/{model_id}:generateContent"

    async def validate_config(self) -> Dict[str, Any]:
        if not self.api_key:
            return {"valid": False, "error": "API key is required"}
        try:
            await self._get("/models")
        except ProviderError as exc:
            return {"valid": False, "error": exc.message}
        return {"valid": True}

    def _body(
        self,
        contents: List[Dict[str, Any]],
        *,
        system: Optional[str],
        model_id: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
        }
        if system and self.supports_system_instruction(model_id):
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    @staticmethod
    def convert_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        return [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]

    def _completion_request(self, params: CompletionParams) -> Dict[str, Any]:
        model_id = params.model or self.get_current_model_id()
        return {
            "model_id": model_id,
            "body": self._body(
                [{"role": "user", "parts": [{"text": params.prompt}]}],
                system=self.resolve_system_prompt(params),
                model_id=model_id,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
            ),
        }

    def _chat_request(self, messages: Sequence[ChatMessage], options: CallOptions) -> Dict[str, Any]:
        system, rest = self.resolve_chat_system_prompt(messages, options)
        model_id, max_tokens, temperature = self.chat_settings(options)
        return {
            "model_id": model_id,
            "body": self._body(
                self.convert_messages(rest),
                system=system,
                model_id=model_id,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
        }

    async def _send(self, request: Dict[str, Any], options: CallOptions) -> CompletionResult:
        self._require_ready()
        model_id = request["model_id"]
        data = await self._post(self._path(model_id, stream=False), request["body"], options.signal)
        candidate = _first_candidate(data)
        return CompletionResult(
            text=self.finalize_text(_candidate_text(candidate), options),
            confidence=self.calculate_confidence(data),
            metadata={
                "provider": self.id,
                "model": model_id,
                "finish_reason": candidate.get("finishReason"),
            },
            usage=_usage_from(data.get("usageMetadata")),
        )

    async def _send_stream(self, request: Dict[str, Any], on_chunk: ChunkCallback, options: CallOptions) -> CompletionResult:
        self._require_ready()
        model_id = request["model_id"]
        outcome = await self._stream(
            self._path(model_id, stream=True),
            request["body"],
            decode_stream_line,
            on_chunk,
            options.signal,
        )
        confidence = _confidence_for(outcome.finish_reason) if outcome.finish_reason else None
        return self.streamed_result(outcome, options, model_id, confidence)

    async def complete(self, params: CompletionParams) -> CompletionResult:
        return await self._send(self._completion_request(params), params.options)

    async def stream_complete(self, params: CompletionParams, on_chunk: ChunkCallback) -> CompletionResult:
        return await self._send_stream(self._completion_request(params), on_chunk, params.options)

    async def chat(self, messages: Sequence[ChatMessage], options: Optional[CallOptions] = None) -> CompletionResult:
        options = options or CallOptions()
        return await self._send(self._chat_request(messages, options), options)

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: ChunkCallback,
        options: Optional[CallOptions] = None,
    ) -> CompletionResult:
        options = options or CallOptions()
        return await self._send_stream(self._chat_request(messages, options), on_chunk, options)

    def calculate_confidence(self, raw_response: Any) -> float:
        if not isinstance(raw_response, dict):
            return _confidence_for(None)
        return _confidence_for(_first_candidate(raw_response).get("finishReason"))


def create_gemini_provider(**kwargs: Any) -> GeminiProvider:
    descriptor = ProviderDescriptor(
        id="gemini",
        display_name="Gemini",
        models=GEMINI_MODELS,
        capabilities=TEXT_CAPABILITIES | {Capability.VISION, Capability.CODE_EXECUTION},
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key_prefix="AI",
        system_instruction_exclusions=DEFAULT_SYSTEM_EXCLUSIONS,
    )
    return GeminiProvider(descriptor, **kwargs)
