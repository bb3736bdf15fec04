"""CLI entry point for the tidycode AI runtime."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Dict, List, NoReturn, Optional, TypeVar

import typer

from .actions import ActionContext, ActionResult
from .config import ConfigError, RuntimeConfig
from .privacy import should_show_privacy_notice
from .providers.base import ChatMessage, PrivacyBlockError, ProviderError, ProviderValidationError
from .runtime import AIRuntime, perform_validation

app = typer.Typer(help="Run AI completions, chats and editor actions against configured providers.")

T = TypeVar("T")

PRIVACY_NOTICE = (
    "Content is sent to a remote AI provider. Secrets are scanned before sending; "
    "set TIDYAI_PRIVACY_ACTION to change how findings are handled."
)

LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".jsx": "jsx",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".xml": "xml",
    ".toml": "toml",
    ".log": "log",
    ".md": "markdown",
}


def _load_config() -> RuntimeConfig:
    try:
        return RuntimeConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _fail_privacy(message: str) -> NoReturn:
    typer.secho("Blocked: outgoing content contains secrets.", fg=typer.colors.RED, err=True)
    try:
        findings = json.loads(message)
    except ValueError:
        findings = []
    for finding in findings:
        typer.secho(f"  {finding.get('type')} at {finding.get('index')}: {finding.get('match')}", err=True)
    raise typer.Exit(code=3)


def _run(coro: Awaitable[T]) -> T:
    """Run ``coro`` and translate provider errors into exit codes."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except PrivacyBlockError as exc:
        _fail_privacy(exc.message)
    except ProviderValidationError as exc:
        typer.secho(f"Configuration error: {exc.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except ProviderError as exc:
        typer.secho(f"Error [{exc.code}]: {exc.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _echo_chunk(text: str, is_done: bool) -> None:
    if is_done:
        typer.echo("")
    elif text:
        typer.echo(text, nl=False)


def _notice(runtime: AIRuntime, provider_id: Optional[str]) -> None:
    if should_show_privacy_notice(runtime.privacy_session, provider_id):
        typer.secho(PRIVACY_NOTICE, fg=typer.colors.YELLOW, err=True)


def _parse_options(pairs: List[str]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--option")
        options[key.strip().replace("-", "_")] = value.strip()
    return options


@app.command()
def providers() -> None:
    """List known providers with readiness and the active model."""
    config = _load_config()

    async def _runner() -> List[Any]:
        async with AIRuntime(config=config) as runtime:
            return runtime.provider_manager.get_available_providers()

    for status in _run(_runner()):
        marker = "*" if status.is_active else " "
        ready = "ready" if status.is_ready else "not configured"
        typer.echo(f"{marker} {status.id:<8} {status.name:<18} {ready:<15} {status.current_model}")


@app.command()
def validate() -> None:
    """Probe the active provider's credentials."""
    config = _load_config()
    outcome = _run(perform_validation(config))
    if not outcome.get("valid"):
        typer.secho(f"Provider is invalid: {outcome.get('error', 'unknown error')}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"Provider {config.active_provider} is valid", fg=typer.colors.GREEN)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="Message to send."),
    stream: bool = typer.Option(False, "--stream", help="Print the reply as it arrives."),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt override."),
) -> None:
    """Send one chat message to the active provider."""
    config = _load_config()

    async def _runner() -> str:
        async with AIRuntime(config=config) as runtime:
            _notice(runtime, config.active_provider)
            manager = runtime.provider_manager
            messages = [ChatMessage.user(prompt)]
            if system:
                messages.insert(0, ChatMessage.system(system))
            if stream:
                await manager.stream_chat(messages, _echo_chunk)
                return ""
            result = await manager.chat(messages)
            return result.text

    text = _run(_runner())
    if text:
        typer.echo(text)


@app.command()
def action(
    action_id: str = typer.Argument(..., help="Action id, e.g. explain or convert."),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="File to act on."),
    stream: bool = typer.Option(False, "--stream", help="Use the streaming variant of the action."),
    option: Optional[List[str]] = typer.Option(None, "--option", "-o", help="Action option as key=value; repeatable."),
    auto: bool = typer.Option(False, "--auto", help="Let auto-select pick the provider and model."),
    language: Optional[str] = typer.Option(None, "--language", help="Override the detected language."),
) -> None:
    """Run an editor action on the contents of FILE."""
    config = _load_config()
    options = _parse_options(option or [])
    content = file.read_text(encoding="utf-8")
    context = ActionContext(
        content=content,
        selection=content,
        language=language or LANGUAGE_BY_SUFFIX.get(file.suffix.lower(), ""),
        file_name=file.name,
    )

    async def _runner() -> ActionResult:
        async with AIRuntime(config=config) as runtime:
            if auto:
                selection = runtime.provider_manager.auto_select(len(context.text), action_id)
                if selection is not None:
                    typer.secho(f"Auto-selected {selection.provider_id}/{selection.model_id}: {selection.reason}", err=True)
                    options["provider_id"] = selection.provider_id
                    options.setdefault("model", selection.model_id)
            # the notice follows the provider that will receive the content
            _notice(runtime, options.get("provider_id") or config.active_provider)
            actions = runtime.actions
            if stream:
                return await actions.execute_stream(action_id, context, _echo_chunk, options)
            return await actions.execute(action_id, context, options)

    result = _run(_runner())
    if not result.success:
        if result.metadata.get("error_code") == "privacy_block":
            _fail_privacy(result.error or "[]")
        typer.secho(f"Action failed: {result.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if not stream:
        typer.echo(result.text)


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
