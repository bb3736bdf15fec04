"""
Shared HTTP helpers for the httpx-based provider adapters.

Provides consistent timeouts, status-to-error mapping and the uniform
stream loop that turns vendor frames into ``on_chunk`` deltas.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from .base import (
    BaseProvider,
    CallOptions,
    CancellationSignal,
    ChunkCallback,
    CompletionResult,
    ProviderAuthError,
    ProviderCancelledError,
    ProviderDescriptor,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderServerError,
    StreamFrame,
    TokenUsage,
    emit_chunk,
)

LOGGER = logging.getLogger("tidycode_ai.providers.http")

T = TypeVar("T")
FrameDecoder = Callable[[Any], Optional[StreamFrame]]


def create_http_client(
    timeout_seconds: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        timeout_seconds: Total timeout for requests.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0))
    return httpx.AsyncClient(timeout=timeout, transport=transport)


def error_message_from_body(body: Any) -> Optional[str]:
    """Pull a human-readable message out of a vendor error envelope."""
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    if body.get("message"):
        return str(body["message"])
    return None


def classify_status(provider_name: str, status: int, raw_message: Optional[str], details: Dict[str, Any]) -> ProviderError:
    """Map an HTTP status to the uniform error taxonomy."""
    if status in (401, 403):
        return ProviderAuthError(
            f"Authentication failed for {provider_name}. Check your API key.",
            details=details,
        )
    if status == 429:
        return ProviderRateLimitError(
            f"Rate limit exceeded for {provider_name}. Please wait a moment and try again.",
            details=details,
        )
    if status >= 500:
        return ProviderServerError(
            f"{provider_name} is experiencing issues ({status}). Please try again later.",
            details=details,
        )
    return ProviderRequestError(
        f"{provider_name}: {raw_message or f'API error: {status}'}",
        details=details,
    )


def classify_transport_error(provider_name: str, exc: Exception) -> ProviderError:
    """Map an httpx transport failure to the uniform error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderCancelledError(
            f"Request to {provider_name} was cancelled or timed out.",
            details={"reason": str(exc)},
        )
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return ProviderNetworkError(
            f"Network error connecting to {provider_name}. Check the base URL and your connection.",
            details={"reason": str(exc)},
        )
    return ProviderNetworkError(
        f"Could not reach {provider_name}: {exc}",
        details={"reason": str(exc)},
    )


async def raise_for_status(provider_name: str, response: httpx.Response) -> None:
    """Raise a classified ProviderError for any non-2xx response."""
    status = response.status_code
    if status < 400:
        return
    await response.aread()
    body_snippet = response.text[:300] if response.text else ""
    try:
        raw_message = error_message_from_body(response.json())
    except (json.JSONDecodeError, ValueError):
        raw_message = None
    details = {"status": status, "body": body_snippet}
    LOGGER.warning("Provider HTTP error provider=%s status=%s", provider_name, status)
    raise classify_status(provider_name, status, raw_message, details)


def parse_json(provider_name: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        snippet = response.text[:500] if response.text else ""
        raise ProviderRequestError(
            f"{provider_name} returned an invalid response",
            details={"body": snippet},
        ) from exc


async def run_cancellable(
    provider_name: str,
    awaitable: Awaitable[T],
    signal: Optional[CancellationSignal],
) -> T:
    """Await ``awaitable`` unless ``signal`` fires first."""
    if signal is None:
        return await awaitable
    if signal.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ProviderCancelledError(f"Request to {provider_name} was cancelled or timed out.")
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if not task.done():
        task.cancel()
        raise ProviderCancelledError(f"Request to {provider_name} was cancelled or timed out.")
    return task.result()


async def post_json(
    provider_name: str,
    client: httpx.AsyncClient,
    url: str,
    payload: Dict[str, Any],
    *,
    headers: Dict[str, str],
    signal: Optional[CancellationSignal] = None,
) -> Any:
    """POST a JSON body and return the decoded JSON reply."""
    try:
        response = await run_cancellable(
            provider_name,
            client.post(url, json=payload, headers=headers),
            signal,
        )
    except httpx.HTTPError as exc:
        raise classify_transport_error(provider_name, exc) from exc
    await raise_for_status(provider_name, response)
    return parse_json(provider_name, response)


@dataclass
class StreamOutcome:
    """Accumulated state of one streaming call."""

    text: str = ""
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    cancelled: bool = False
    chunks: int = 0


async def consume_frames(
    frames: AsyncIterator[Any],
    decode: FrameDecoder,
    on_chunk: ChunkCallback,
    signal: Optional[CancellationSignal] = None,
) -> StreamOutcome:
    """
    Drive a vendor frame decoder over an async iterator of raw frames.

    ``on_chunk`` receives one call per non-empty delta and exactly one
    final ``("", True)`` call, whether the stream ends, hits its
    terminator, or is cancelled through ``signal``.
    """
    outcome = StreamOutcome()
    parts = []
    try:
        async for raw in frames:
            if signal is not None and signal.cancelled:
                outcome.cancelled = True
                break
            frame = decode(raw)
            if frame is None:
                continue
            if frame.usage is not None:
                outcome.usage = frame.usage
            if frame.finish_reason:
                outcome.finish_reason = frame.finish_reason
            if frame.text:
                parts.append(frame.text)
                outcome.chunks += 1
                await emit_chunk(on_chunk, frame.text, False)
            if frame.done:
                break
    finally:
        outcome.text = "".join(parts)
    if signal is not None and signal.cancelled:
        outcome.cancelled = True
    await emit_chunk(on_chunk, "", True)
    return outcome


async def stream_frames(
    provider_name: str,
    client: httpx.AsyncClient,
    url: str,
    payload: Dict[str, Any],
    *,
    headers: Dict[str, str],
    decode: FrameDecoder,
    on_chunk: ChunkCallback,
    signal: Optional[CancellationSignal] = None,
) -> StreamOutcome:
    """Open a streaming POST and decode its body line by line."""
    if signal is not None and signal.cancelled:
        raise ProviderCancelledError(f"Request to {provider_name} was cancelled or timed out.")
    try:
        async with client.stream("POST", url, json=payload, headers=headers) as response:
            await raise_for_status(provider_name, response)
            return await consume_frames(response.aiter_lines(), decode, on_chunk, signal)
    except httpx.HTTPError as exc:
        raise classify_transport_error(provider_name, exc) from exc


def loads_or_none(data: str) -> Optional[Dict[str, Any]]:
    """Decode one JSON frame, ignoring malformed or non-object payloads."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class HttpxProvider(BaseProvider):
    """Base for adapters that speak their vendor protocol over httpx."""

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(descriptor, timeout=timeout)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_http_client(self.timeout, self._transport)
        return self._client

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def request_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _get(self, path: str) -> Any:
        try:
            response = await self.client.get(self.url(path), headers=self.request_headers())
        except httpx.HTTPError as exc:
            raise classify_transport_error(self.name, exc) from exc
        await raise_for_status(self.name, response)
        return parse_json(self.name, response)

    async def _post(self, path: str, payload: Dict[str, Any], signal: Optional[CancellationSignal]) -> Any:
        return await post_json(self.name, self.client, self.url(path), payload, headers=self.request_headers(), signal=signal)

    async def _stream(
        self,
        path: str,
        payload: Dict[str, Any],
        decode: FrameDecoder,
        on_chunk: ChunkCallback,
        signal: Optional[CancellationSignal],
    ) -> StreamOutcome:
        outcome = await stream_frames(
            self.name,
            self.client,
            self.url(path),
            payload,
            headers=self.request_headers(),
            decode=decode,
            on_chunk=on_chunk,
            signal=signal,
        )
        if outcome.cancelled:
            LOGGER.info("Stream cancelled provider=%s chunks=%s", self.id, outcome.chunks)
        return outcome

    def streamed_result(self, outcome: StreamOutcome, options: CallOptions, model: str, confidence: Optional[float]) -> CompletionResult:
        return CompletionResult(
            text=self.finalize_text(outcome.text, options),
            confidence=confidence,
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

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def sse_data(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for other lines."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()
