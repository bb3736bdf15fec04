"""CLI command tests for the tidyai entry point."""

import pytest
from typer.testing import CliRunner

from tidycode_ai.cli import PRIVACY_NOTICE, app
from tidycode_ai.manager import ProviderManager
from tidycode_ai.providers.base import TEXT_CAPABILITIES, Capability, ProviderRateLimitError
from tidycode_ai.runtime import AIRuntime

from conftest import EventLog, StubProvider, stub_factories

SECRET = "sk-" + "Mn1Bv2Cx3Za4Sd5Fg6Hj7Kl8"


def _baseline_env():
    return {
        "TIDYAI_ACTIVE_PROVIDER": "openai",
        "TIDYAI_OPENAI_API_KEY": "sk-test-key",
    }


@pytest.fixture
def stub(monkeypatch):
    """Route every CLI runtime to an in-memory adapter registered as ``openai``."""
    provider = StubProvider("openai", reply="stub reply")

    def _runtime(*, config):
        manager = ProviderManager(factories=stub_factories(provider), metrics=EventLog(), privacy=config.privacy)
        return AIRuntime(config=config, provider_manager=manager)

    monkeypatch.setattr("tidycode_ai.cli.AIRuntime", _runtime)
    return provider


def test_cli_providers_lists_active_provider(stub):
    runner = CliRunner()

    result = runner.invoke(app, ["providers"], env=_baseline_env())

    assert result.exit_code == 0
    line = result.output.strip().splitlines()[0]
    assert line.startswith("* openai")
    assert "ready" in line
    assert line.endswith("stub-model")


def test_cli_validate(monkeypatch):
    """`tidyai validate` should report status based on the validation probe."""
    runner = CliRunner()

    async def fake_validation(config):
        return {"valid": True}

    monkeypatch.setattr("tidycode_ai.cli.perform_validation", fake_validation)

    result = runner.invoke(app, ["validate"], env=_baseline_env())

    assert result.exit_code == 0
    assert "Provider openai is valid" in result.output


def test_cli_validate_failure(monkeypatch):
    """Validation failures should exit non-zero."""
    runner = CliRunner()

    async def failing_validation(config):
        return {"valid": False, "error": "Authentication failed for OpenAI. Check your API key."}

    monkeypatch.setattr("tidycode_ai.cli.perform_validation", failing_validation)

    result = runner.invoke(app, ["validate"], env=_baseline_env())

    assert result.exit_code == 1
    assert "Provider is invalid: Authentication failed" in result.output


def test_cli_configuration_error():
    """Configuration errors should surface with exit code 2."""
    runner = CliRunner()
    env = dict(_baseline_env(), TIDYAI_PRIVACY_ACTION="ignore")

    result = runner.invoke(app, ["providers"], env=env)

    assert result.exit_code == 2
    assert "configuration error" in result.output.lower()


def test_cli_chat_prints_reply_and_privacy_notice(stub):
    runner = CliRunner()

    result = runner.invoke(app, ["chat", "hello", "--system", "Be brief"], env=_baseline_env())

    assert result.exit_code == 0
    assert "stub reply" in result.output
    assert PRIVACY_NOTICE in result.output
    _, messages, _ = stub.calls[0]
    assert [m.role for m in messages] == ["system", "user"]


def test_cli_chat_stream(stub):
    runner = CliRunner()

    result = runner.invoke(app, ["chat", "hello", "--stream"], env=_baseline_env())

    assert result.exit_code == 0
    assert "stub reply" in result.output
    assert stub.calls[0][0] == "stream_chat"


def test_cli_chat_blocks_secrets(stub):
    runner = CliRunner()

    result = runner.invoke(app, ["chat", f"my key is {SECRET}"], env=_baseline_env())

    assert result.exit_code == 3
    assert "OPENAI_KEY" in result.output
    assert SECRET not in result.output
    assert stub.calls == []


def test_cli_chat_provider_error(stub):
    runner = CliRunner()
    stub.error = ProviderRateLimitError("Rate limit exceeded for OpenAI.")

    result = runner.invoke(app, ["chat", "hello"], env=_baseline_env())

    assert result.exit_code == 1
    assert "Error [rate_limited]" in result.output


def test_cli_chat_without_key_is_configuration_error(stub):
    runner = CliRunner()

    result = runner.invoke(app, ["chat", "hello"], env={"TIDYAI_ACTIVE_PROVIDER": "openai", "TIDYAI_OPENAI_API_KEY": ""})

    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_cli_action_converts_file(stub, tmp_path):
    stub.reply = "a: 1"
    source = tmp_path / "data.json"
    source.write_text('{"a": 1}', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["action", "convert", str(source), "-o", "target-format=yaml"], env=_baseline_env())

    assert result.exit_code == 0
    assert "a: 1" in result.output
    params = stub.calls[0][1]
    assert params.language == "yaml"


def test_cli_action_failure_and_bad_option(stub, tmp_path):
    source = tmp_path / "notes.md"
    source.write_text("hello", encoding="utf-8")
    runner = CliRunner()

    unknown = runner.invoke(app, ["action", "nope", str(source)], env=_baseline_env())
    malformed = runner.invoke(app, ["action", "explain", str(source), "-o", "detail"], env=_baseline_env())

    assert unknown.exit_code == 1
    assert "Action failed: Unknown action: nope" in unknown.output
    assert malformed.exit_code == 2
    assert stub.calls == []


def test_cli_action_privacy_block_exits_3(stub, tmp_path):
    source = tmp_path / "settings.py"
    source.write_text(f'KEY = "{SECRET}"\n', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["action", "explain", str(source)], env=_baseline_env())

    assert result.exit_code == 3
    assert "Blocked" in result.output
    assert stub.calls == []


def _two_providers(monkeypatch, ollama_caps, openai_caps):
    local = StubProvider("ollama", capabilities=ollama_caps, reply="local reply", requires_api_key=False)
    remote = StubProvider("openai", capabilities=openai_caps, reply="remote reply")

    def _runtime(*, config):
        manager = ProviderManager(factories=stub_factories(local, remote), metrics=EventLog(), privacy=config.privacy)
        return AIRuntime(config=config, provider_manager=manager)

    monkeypatch.setattr("tidycode_ai.cli.AIRuntime", _runtime)
    return local, remote


def test_cli_auto_shows_notice_for_selected_remote_provider(monkeypatch, tmp_path):
    local, remote = _two_providers(monkeypatch, TEXT_CAPABILITIES - {Capability.EXPLAIN}, TEXT_CAPABILITIES)
    source = tmp_path / "app.py"
    source.write_text("x = 1\n", encoding="utf-8")
    env = dict(_baseline_env(), TIDYAI_ACTIVE_PROVIDER="ollama", TIDYAI_OLLAMA_ENABLED="yes")

    result = CliRunner().invoke(app, ["action", "explain", str(source), "--auto"], env=env)

    assert result.exit_code == 0
    assert "remote reply" in result.output
    assert "Auto-selected openai/stub-model" in result.output
    assert PRIVACY_NOTICE in result.output
    assert local.calls == []


def test_cli_auto_skips_notice_for_selected_local_provider(monkeypatch, tmp_path):
    local, remote = _two_providers(monkeypatch, TEXT_CAPABILITIES, TEXT_CAPABILITIES - {Capability.EXPLAIN})
    source = tmp_path / "app.py"
    source.write_text("x = 1\n", encoding="utf-8")
    env = dict(_baseline_env(), TIDYAI_OLLAMA_ENABLED="yes")

    result = CliRunner().invoke(app, ["action", "explain", str(source), "--auto"], env=env)

    assert result.exit_code == 0
    assert "local reply" in result.output
    assert PRIVACY_NOTICE not in result.output
    assert remote.calls == []
