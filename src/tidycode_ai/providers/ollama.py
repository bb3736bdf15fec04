"""Adapter for a local Ollama daemon."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from .base import (
    TEXT_CAPABILITIES,
    CallOptions,
    ChatMessage,
    ChunkCallback,
    CompletionParams,
    CompletionResult,
    ModelInfo,
    ProviderDescriptor,
    ProviderError,
    StreamFrame,
    TokenUsage,
)
from .http import HttpxProvider, classify_transport_error, loads_or_none, raise_for_status

LOGGER = logging.getLogger("tidycode_ai.providers.ollama")

LOCAL_CONFIDENCE = 0.8

ProgressCallback = Callable[[Dict[str, Any]], Any]

OLLAMA_MODELS = (
    ModelInfo("qwen2.5-coder:7b", "Qwen 2.5 Coder 7B", 32768, is_default=True,
              description="Excellent for code generation"),
    ModelInfo("qwen2.5-coder:1.5b", "Qwen 2.5 Coder 1.5B", 32768, description="Fast and lightweight coder"),
    ModelInfo("qwen2.5:7b", "Qwen 2.5 7B", 128000, description="General purpose model"),
    ModelInfo("llama3.2:latest", "Llama 3.2", 128000, description="Latest Llama model"),
    ModelInfo("llama3.1:8b", "Llama 3.1 8B", 128000, description="Efficient Llama model"),
    ModelInfo("codellama:7b", "CodeLlama 7B", 16384, description="Code-specialized Llama"),
    ModelInfo("deepseek-coder-v2:latest", "DeepSeek Coder V2", 128000, description="Advanced code model"),
    ModelInfo("mistral:7b", "Mistral 7B", 32768, description="Efficient general model"),
    ModelInfo("phi3:mini", "Phi-3 Mini", 128000, description="Lightweight Phi-3"),
    ModelInfo("gemma2:9b", "Gemma 2 9B", 8192, description="Google Gemma 2"),
    ModelInfo("llava:7b", "LLaVA 7B", 4096, supports_vision=True, description="Smaller vision model"),
)


def _usage_from(data: Dict[str, Any]) -> TokenUsage:
    prompt = data.get("prompt_eval_count") or 0
    completion = data.get("eval_count") or 0
    return TokenUsage(prompt, completion, prompt + completion)


def decode_ndjson_line(line: str) -> Optional[StreamFrame]:
    """Each line is a complete JSON object; ``done: true`` ends the stream."""
    if not line.strip():
        return None
    payload = loads_or_none(line)
    if payload is None:
        return None
    text = (payload.get("message") or {}).get("content") or ""
    if payload.get("done"):
        return StreamFrame(
            text=text,
            done=True,
            usage=_usage_from(payload),
            finish_reason=payload.get("done_reason") or "stop",
        )
    return StreamFrame(text=text)


def _format_size(size: Any) -> str:
    if not isinstance(size, (int, float)):
        return ""
    return f"{size / 1e9:.1f} GB"


class OllamaProvider(HttpxProvider):
    """NDJSON streaming against ``/api/chat``; no credentials required."""

    family = "local"

    async def validate_config(self) -> Dict[str, Any]:
        try:
            data = await self._get("/api/tags")
        except ProviderError:
            return {
                "valid": False,
                "error": f"Cannot connect to Ollama at {self.base_url}. Is Ollama running?",
            }
        models = [m.get("name") for m in data.get("models") or [] if m.get("name")]
        return {"valid": True, "models": models}

    async def list_local_models(self) -> Tuple[ModelInfo, ...]:
        """Models installed in the daemon, or the static catalogue when unreachable."""
        try:
            data = await self._get("/api/tags")
        except ProviderError as exc:
            LOGGER.warning("Falling back to static Ollama catalogue: %s", exc.message)
            return self.models
        installed = [
            ModelInfo(m["name"], m["name"], description=_format_size(m.get("size")))
            for m in data.get("models") or []
            if m.get("name")
        ]
        return tuple(installed) or self.models

    async def is_model_available(self, model_id: str) -> bool:
        models = await self.list_local_models()
        return any(m.id == model_id for m in models)

    async def pull_model(self, model_id: str, on_progress: Optional[ProgressCallback] = None) -> None:
        """Pull a model, reporting ``{status, completed, total}`` for every progress line."""
        payload = {"name": model_id, "stream": True}
        try:
            async with self.client.stream("POST", self.url("/api/pull"), json=payload, headers=self.request_headers()) as response:
                await raise_for_status(self.name, response)
                async for line in response.aiter_lines():
                    progress = loads_or_none(line) if line.strip() else None
                    if progress is None or on_progress is None:
                        continue
                    update = {
                        "status": progress.get("status"),
                        "completed": progress.get("completed"),
                        "total": progress.get("total"),
                    }
                    outcome = on_progress(update)
                    if inspect.isawaitable(outcome):
                        await outcome
        except httpx.HTTPError as exc:
            raise classify_transport_error(self.name, exc) from exc

    def _payload(self, model: str, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "options": {"num_predict": max_tokens, "temperature": temperature},
        }

    def _completion_payload(self, params: CompletionParams) -> Dict[str, Any]:
        return self._payload(
            params.model or self.get_current_model_id(),
            [
                {"role": "system", "content": self.resolve_system_prompt(params)},
                {"role": "user", "content": params.prompt},
            ],
            params.max_tokens,
            params.temperature,
        )

    def _chat_payload(self, messages: Sequence[ChatMessage], options: CallOptions) -> Dict[str, Any]:
        system, rest = self.resolve_chat_system_prompt(messages, options)
        model, max_tokens, temperature = self.chat_settings(options)
        wire = [{"role": "system", "content": system}]
        wire.extend({"role": m.role, "content": m.content} for m in rest)
        return self._payload(model, wire, max_tokens, temperature)

    async def _send(self, payload: Dict[str, Any], options: CallOptions) -> CompletionResult:
        payload["stream"] = False
        data = await self._post("/api/chat", payload, options.signal)
        text = (data.get("message") or {}).get("content") or ""
        return CompletionResult(
            text=self.finalize_text(text, options),
            confidence=self.calculate_confidence(data),
            metadata={
                "provider": self.id,
                "model": data.get("model", payload["model"]),
                "finish_reason": data.get("done_reason"),
            },
            usage=_usage_from(data),
        )

    async def _send_stream(self, payload: Dict[str, Any], on_chunk: ChunkCallback, options: CallOptions) -> CompletionResult:
        payload["stream"] = True
        outcome = await self._stream("/api/chat", payload, decode_ndjson_line, on_chunk, options.signal)
        return self.streamed_result(outcome, options, payload["model"], LOCAL_CONFIDENCE)

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
        # local models report no usable stop reason
        return LOCAL_CONFIDENCE


def create_ollama_provider(**kwargs: Any) -> OllamaProvider:
    descriptor = ProviderDescriptor(
        id="ollama",
        display_name="Ollama",
        models=OLLAMA_MODELS,
        capabilities=TEXT_CAPABILITIES,
        base_url="http://localhost:11434",
        requires_api_key=False,
    )
    return OllamaProvider(descriptor, **kwargs)
