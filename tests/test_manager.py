"""Tests for provider registry, routing and the outgoing privacy check."""

import asyncio
import json

import httpx
import pytest

from tidycode_ai.manager import ManagerConfig, ProviderManager, ProviderSettings
from tidycode_ai.privacy import PrivacyConfig
from tidycode_ai.providers import create_claude_provider
from tidycode_ai.providers.base import (
    TEXT_CAPABILITIES,
    CallOptions,
    Capability,
    CapabilityError,
    ChatMessage,
    CompletionParams,
    ModelInfo,
    PrivacyBlockError,
    ProviderRateLimitError,
    ProviderValidationError,
)

from conftest import ChunkRecorder, EventLog, StubProvider, stub_factories

SECRET = "sk-" + "Zy9Xw8Vu7Ts6Rq5Po4Nm3Lk2"


async def _manager(*providers, active="stub", privacy=None):
    metrics = EventLog()
    manager = ProviderManager(factories=stub_factories(*providers), metrics=metrics, privacy=privacy)
    await manager.initialize(
        ManagerConfig(
            providers={p.id: ProviderSettings(api_key=f"key-{p.id}") for p in providers},
            active_provider=active,
        )
    )
    return manager, metrics


@pytest.mark.asyncio
async def test_initialize_rejects_unknown_provider_ids():
    manager = ProviderManager()

    with pytest.raises(ProviderValidationError) as exc:
        await manager.initialize(ManagerConfig(providers={"nope": ProviderSettings(api_key="x")}))

    assert "nope" in exc.value.message
    assert manager.is_initialized() is False


@pytest.mark.asyncio
async def test_initialize_requires_key_for_configured_remote_provider():
    manager = ProviderManager()

    with pytest.raises(ProviderValidationError) as exc:
        await manager.initialize(ManagerConfig(providers={"claude": ProviderSettings(default_model="claude-4-opus")}))

    assert exc.value.message == "Claude: API key is required"


@pytest.mark.asyncio
async def test_initialize_builds_every_known_adapter():
    manager = ProviderManager()
    await manager.initialize(
        ManagerConfig(
            providers={"groq": ProviderSettings(api_key="gsk_test_key_123456789012")},
            active_provider="groq",
        )
    )

    statuses = {s.id: s for s in manager.get_available_providers()}

    assert set(statuses) == {"claude", "openai", "gemini", "groq", "mistral", "ollama"}
    assert statuses["groq"].is_ready is True
    assert statuses["groq"].is_active is True
    assert statuses["openai"].is_ready is False
    assert manager.active_model == "llama-3.3-70b-versatile"
    await manager.aclose()


@pytest.mark.asyncio
async def test_reinitialize_swaps_registry():
    first = StubProvider()
    manager, _ = await _manager(first)
    second = StubProvider()
    manager._factories = stub_factories(second)

    await manager.initialize(ManagerConfig(providers={"stub": ProviderSettings(api_key="new")}, active_provider="stub"))

    assert manager.active_provider is second
    assert second.api_key == "new"
    assert first.api_key == "key-stub"


@pytest.mark.asyncio
async def test_failed_reinitialize_keeps_previous_registry():
    manager = ProviderManager(metrics=EventLog())
    await manager.initialize(
        ManagerConfig(providers={"openai": ProviderSettings(api_key="sk-first-key-000000000000")}, active_provider="openai")
    )
    before = manager.active_provider

    with pytest.raises(ProviderValidationError):
        await manager.initialize(
            ManagerConfig(
                providers={
                    "openai": ProviderSettings(api_key="sk-second-key-00000000000"),
                    "claude": ProviderSettings(default_model="claude-3-5-haiku-20241022"),
                },
                active_provider="claude",
            )
        )

    assert manager.active_provider is before
    assert manager.active_provider.id == "openai"
    assert manager.active_provider.api_key == "sk-first-key-000000000000"
    assert manager.get_provider("claude").is_ready() is False
    await manager.aclose()


def _paced_sse(pieces, input_tokens):
    events = [{"type": "message_start", "message": {"usage": {"input_tokens": input_tokens}}}]
    events += [{"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": p}} for p in pieces]
    events.append({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": len(pieces)}})

    async def _frames():
        for event in events:
            await asyncio.sleep(0)
            yield f"data: {json.dumps(event)}\n\n".encode()

    return httpx.Response(200, content=_frames(), headers={"content-type": "text/event-stream"})


@pytest.mark.asyncio
async def test_concurrent_streams_keep_separate_state():
    replies = {"first": ["a1", "a2", "a3", "a4"], "second": ["b1", "b2", "b3", "b4"]}

    def handler(request):
        prompt = json.loads(request.content)["messages"][-1]["content"]
        return _paced_sse(replies[prompt], 5 if prompt == "first" else 9)

    claude = create_claude_provider(transport=httpx.MockTransport(handler))
    manager = ProviderManager(factories={"claude": lambda **_: claude}, metrics=EventLog())
    await manager.initialize(
        ManagerConfig(providers={"claude": ProviderSettings(api_key="sk-ant-test-key-1234567890")}, active_provider="claude")
    )
    first_chunks, second_chunks = ChunkRecorder(), ChunkRecorder()

    first, second = await asyncio.gather(
        manager.stream_chat([ChatMessage.user("first")], first_chunks),
        manager.stream_chat([ChatMessage.user("second")], second_chunks),
    )

    assert first.text == first_chunks.text == "a1a2a3a4"
    assert second.text == second_chunks.text == "b1b2b3b4"
    assert first_chunks.done_calls == [("", True)]
    assert second_chunks.done_calls == [("", True)]
    assert (first.usage.prompt_tokens, second.usage.prompt_tokens) == (5, 9)
    await manager.aclose()


@pytest.mark.asyncio
async def test_complete_routes_to_active_provider_with_active_model():
    stub = StubProvider(reply="hello")
    manager, metrics = await _manager(stub)

    result = await manager.complete(CompletionParams(prompt="hi"))

    assert result.text == "hello"
    _, params = stub.calls[0]
    assert params.model == "stub-model"
    assert [e.status for e in metrics.events] == ["success"]
    assert metrics.events[0].operation == "complete"


@pytest.mark.asyncio
async def test_missing_active_provider_is_a_validation_error():
    manager, _ = await _manager(StubProvider(), active=None)

    with pytest.raises(ProviderValidationError) as exc:
        await manager.chat([ChatMessage.user("hi")])

    assert "No active AI provider configured" in exc.value.message


@pytest.mark.asyncio
async def test_capability_checked_before_any_call():
    stub = StubProvider(capabilities={Capability.COMPLETION, Capability.CHAT})
    manager, metrics = await _manager(stub)

    with pytest.raises(CapabilityError):
        await manager.complete(CompletionParams(prompt="x"), require=(Capability.EXPLAIN,))
    with pytest.raises(CapabilityError):
        await manager.stream_chat([ChatMessage.user("x")], lambda text, done: None)

    assert stub.calls == []
    assert metrics.events == []
    assert manager.has_capability(Capability.CHAT) is True
    assert manager.has_capability(Capability.STREAM) is False


@pytest.mark.asyncio
async def test_provider_id_routes_without_switching_active():
    primary = StubProvider("primary", reply="from primary")
    other = StubProvider("other", reply="from other")
    manager, _ = await _manager(primary, other, active="primary")

    result = await manager.complete(CompletionParams(prompt="x"), provider_id="other")

    assert result.text == "from other"
    assert primary.calls == []
    assert manager.active_provider is primary


@pytest.mark.asyncio
async def test_secret_blocks_remote_call_and_records_blocked_event():
    stub = StubProvider()
    manager, metrics = await _manager(stub)

    with pytest.raises(PrivacyBlockError) as exc:
        await manager.complete(CompletionParams(prompt=f"key={SECRET}"))

    assert stub.calls == []
    assert exc.value.findings[0].type == "OPENAI_KEY"
    assert metrics.events[0].status == "blocked"
    assert metrics.events[0].error_code == "privacy_block"


@pytest.mark.asyncio
async def test_allow_secrets_option_bypasses_block():
    stub = StubProvider()
    manager, _ = await _manager(stub)

    await manager.complete(CompletionParams(prompt=f"key={SECRET}", options=CallOptions(allow_secrets=True)))

    assert stub.calls[0][1].prompt == f"key={SECRET}"


@pytest.mark.asyncio
async def test_local_provider_receives_secrets_unchanged():
    local = StubProvider("ollama", requires_api_key=False)
    manager, _ = await _manager(local, active="ollama")

    await manager.complete(CompletionParams(prompt=f"key={SECRET}"))

    assert local.calls[0][1].prompt == f"key={SECRET}"


@pytest.mark.asyncio
async def test_redact_policy_rewrites_user_and_system_turns_only():
    stub = StubProvider()
    manager, _ = await _manager(stub, privacy=PrivacyConfig(scan_action="redact"))

    await manager.chat(
        [ChatMessage.system(f"sys {SECRET}"), ChatMessage.user(f"user {SECRET}"), ChatMessage.assistant(f"bot {SECRET}")],
        CallOptions(system_prompt=f"extra {SECRET}"),
    )

    _, messages, options = stub.calls[0]
    assert messages[0].content == "sys [REDACTED-OPENAI_KEY]"
    assert messages[1].content == "user [REDACTED-OPENAI_KEY]"
    assert messages[2].content == f"bot {SECRET}"
    assert options.system_prompt == "extra [REDACTED-OPENAI_KEY]"
    assert options.model == "stub-model"


@pytest.mark.asyncio
async def test_completion_is_truncated_before_sending():
    stub = StubProvider()
    manager, _ = await _manager(stub, privacy=PrivacyConfig(max_context_chars=5))

    await manager.complete(CompletionParams(prompt="abcdefghij"))

    assert stub.calls[0][1].prompt == "abcde\n...[content truncated to 5 characters]"


@pytest.mark.asyncio
async def test_set_privacy_config_validates_values():
    manager, _ = await _manager(StubProvider())

    updated = manager.set_privacy_config(scan_action="allow")

    assert updated.scan_action == "allow"
    assert manager.privacy_config.enable_scanning is True
    with pytest.raises(ValueError):
        manager.set_privacy_config(scan_action="ignore")
    with pytest.raises(ValueError):
        manager.set_privacy_config(max_context_chars=-1)
    assert manager.privacy_config.scan_action == "allow"


@pytest.mark.asyncio
async def test_provider_errors_are_recorded_and_propagated(recorder):
    stub = StubProvider(error=ProviderRateLimitError("slow down"))
    manager, metrics = await _manager(stub)

    with pytest.raises(ProviderRateLimitError):
        await manager.stream_complete(CompletionParams(prompt="x"), recorder)

    event = metrics.events[0]
    assert event.status == "error"
    assert event.retryable is True
    assert event.operation == "stream_complete"


@pytest.mark.asyncio
async def test_stream_chat_records_chunk_count(recorder):
    stub = StubProvider(reply="abcd")
    manager, metrics = await _manager(stub)

    result = await manager.stream_chat([ChatMessage.user("x")], recorder)

    assert result.text == "abcd"
    assert recorder.calls == [("ab", False), ("cd", False), ("", True)]
    assert metrics.events[0].chunks == 2


@pytest.mark.asyncio
async def test_unregister_active_provider_clears_routing():
    manager, _ = await _manager(StubProvider())

    await manager.unregister_provider("stub")

    assert manager.active_provider is None
    assert manager.get_provider("stub") is None


@pytest.mark.asyncio
async def test_auto_select_uses_ready_providers():
    small = StubProvider("small")
    manager, _ = await _manager(small, active="small")

    selection = manager.auto_select(100, "explain")

    assert selection.provider_id == "small"
    assert selection.reason == "Only available provider"


@pytest.mark.asyncio
async def test_register_provider_adds_adapter_without_rebuilding():
    stub = StubProvider()
    manager, _ = await _manager(stub)
    extra = StubProvider("extra", reply="extra reply")
    await extra.initialize(api_key="key-extra")

    manager.register_provider(extra)

    assert manager.get_provider("extra") is extra
    assert manager.get_provider("stub") is stub
    assert manager.active_provider is stub
    result = await manager.chat([ChatMessage.user("hi")], provider_id="extra")
    assert result.text == "extra reply"


@pytest.mark.asyncio
async def test_configure_provider_applies_settings_and_validates():
    good = StubProvider("good")
    bad = StubProvider("bad", error=ProviderRateLimitError("slow down"))
    manager, _ = await _manager(good, bad, active="good")

    ok = await manager.configure_provider("good", ProviderSettings(api_key="rotated", default_model="stub-model"))
    failed = await manager.configure_provider("bad", ProviderSettings(api_key="rotated"))
    missing = await manager.configure_provider("nope", ProviderSettings(api_key="x"))

    assert ok == {"valid": True}
    assert good.api_key == "rotated"
    assert failed == {"valid": False}
    assert missing == {"valid": False, "error": 'Provider "nope" not found'}


@pytest.mark.asyncio
async def test_set_active_model_updates_routing_and_info():
    models = (
        ModelInfo("small", "Small", 8192, is_default=True),
        ModelInfo("large", "Large", 128000),
    )
    stub = StubProvider(models=models)
    manager, _ = await _manager(stub)

    manager.set_active_model("large")
    await manager.complete(CompletionParams(prompt="hi"))
    info = manager.get_active_provider_info()

    assert manager.active_model == "large"
    assert stub.calls[0][1].model == "large"
    assert info.id == "stub"
    assert info.name == "Stub"
    assert info.model == "large"
    assert info.model_info.context_window == 128000
    assert info.is_ready is True
    assert Capability.EXPLAIN in info.capabilities


@pytest.mark.asyncio
async def test_active_model_and_info_without_active_provider():
    manager, _ = await _manager(StubProvider(), active=None)

    assert manager.get_active_provider_info() is None
    with pytest.raises(ProviderValidationError):
        manager.set_active_model("stub-model")


@pytest.mark.asyncio
async def test_providers_with_capability_lists_ready_matches():
    vision = StubProvider("vision", capabilities=TEXT_CAPABILITIES | {Capability.VISION})
    text_only = StubProvider("text")
    manager, _ = await _manager(vision, text_only, active="text")
    manager.register_provider(StubProvider("idle", capabilities=TEXT_CAPABILITIES | {Capability.VISION}))

    assert [p.id for p in manager.get_providers_with_capability(Capability.VISION)] == ["vision"]
    assert sorted(p.id for p in manager.get_providers_with_capability(Capability.CHAT)) == ["text", "vision"]
