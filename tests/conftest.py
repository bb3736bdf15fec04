"""Shared test fixtures for the tidycode AI runtime."""

import json
import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from tidycode_ai.providers.base import (  # noqa: E402
    TEXT_CAPABILITIES,
    BaseProvider,
    CallOptions,
    CompletionResult,
    ModelInfo,
    ProviderDescriptor,
    TokenUsage,
    emit_chunk,
)


class ChunkRecorder:
    """Collects ``on_chunk`` calls so tests can assert on the delta sequence."""

    def __init__(self):
        self.calls = []

    def __call__(self, text, is_done):
        self.calls.append((text, is_done))

    @property
    def text(self):
        return "".join(text for text, _ in self.calls)

    @property
    def done_calls(self):
        return [call for call in self.calls if call[1]]


class StubProvider(BaseProvider):
    """In-memory adapter that records every call and replies with ``reply``."""

    def __init__(
        self,
        provider_id="stub",
        *,
        capabilities=TEXT_CAPABILITIES,
        reply="stub reply",
        error=None,
        requires_api_key=True,
        models=None,
        timeout=60.0,
    ):
        descriptor = ProviderDescriptor(
            id=provider_id,
            display_name=provider_id.title(),
            models=models or (ModelInfo("stub-model", "Stub Model", 8192, is_default=True),),
            capabilities=frozenset(capabilities),
            base_url="http://stub.invalid",
            requires_api_key=requires_api_key,
        )
        super().__init__(descriptor, timeout=timeout)
        self.reply = reply
        self.error = error
        self.calls = []

    async def validate_config(self):
        return {"valid": self.error is None}

    def _result(self, options):
        if self.error is not None:
            raise self.error
        return CompletionResult(
            text=self.finalize_text(self.reply, options),
            confidence=0.9,
            metadata={"provider": self.id},
            usage=TokenUsage(1, 2, 3),
        )

    async def _stream(self, on_chunk, options):
        if self.error is not None:
            raise self.error
        half = len(self.reply) // 2
        for part in (self.reply[:half], self.reply[half:]):
            if part:
                await emit_chunk(on_chunk, part, False)
        await emit_chunk(on_chunk, "", True)
        result = self._result(options)
        result.metadata.update(streamed=True, chunks=2, cancelled=False)
        return result

    async def complete(self, params):
        self.calls.append(("complete", params))
        return self._result(params.options)

    async def stream_complete(self, params, on_chunk):
        self.calls.append(("stream_complete", params))
        return await self._stream(on_chunk, params.options)

    async def chat(self, messages, options=None):
        options = options or CallOptions()
        self.calls.append(("chat", list(messages), options))
        return self._result(options)

    async def stream_chat(self, messages, on_chunk, options=None):
        options = options or CallOptions()
        self.calls.append(("stream_chat", list(messages), options))
        return await self._stream(on_chunk, options)

    def calculate_confidence(self, raw_response):
        return 0.9


class EventLog:
    """Metrics collector that keeps every recorded event."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


def stub_factories(*providers):
    """Factory map that hands the manager pre-built stub adapters."""

    def _factory(provider):
        return lambda **_: provider

    return {provider.id: _factory(provider) for provider in providers}


def sse_body(events):
    """Encode JSON events as an SSE body."""
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events).encode()


def ndjson_body(objects):
    return "".join(json.dumps(obj) + "\n" for obj in objects).encode()


@pytest.fixture
def recorder():
    return ChunkRecorder()
