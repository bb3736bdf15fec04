"""Named, prompt-templated tasks built on top of the provider manager."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field, fields
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from ..manager import ProviderManager
from ..providers.base import (
    CallOptions,
    Capability,
    ChunkCallback,
    CompletionParams,
    CompletionResult,
    PrivacyBlockError,
    ProviderError,
)

LOGGER = logging.getLogger("tidycode_ai.actions")

MAX_HISTORY = 50


@dataclass
class ActionContext:
    """Editor state an action works on."""

    content: str = ""
    selection: str = ""
    language: str = ""
    file_name: str = ""
    cursor_line: int = 0
    error_details: Optional[Any] = None

    @property
    def text(self) -> str:
        return self.selection or self.content

    def has_selection(self) -> bool:
        return bool(self.selection)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ActionContext":
        """Build a context from an editor payload; unknown keys are ignored."""
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = CONTEXT_ALIASES.get(key, key)
            if name in CONTEXT_FIELDS:
                values[name] = value
        return cls(**values)


CONTEXT_FIELDS = frozenset(f.name for f in fields(ActionContext))
CONTEXT_ALIASES = {
    "fileName": "file_name",
    "cursorLine": "cursor_line",
    "errorDetails": "error_details",
}


@dataclass
class ActionResult:
    action_id: str
    success: bool
    text: str = ""
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def ok(cls, action_id: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(action_id=action_id, success=True, text=text, metadata=metadata or {})

    @classmethod
    def failure(cls, action_id: str, error: str, metadata: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(action_id=action_id, success=False, error=error, metadata=metadata or {})


@dataclass(frozen=True)
class ActionMetadata:
    id: str
    name: str
    description: str
    capability: Optional[Capability] = None
    requires_selection: bool = False
    options: Tuple[str, ...] = ()


ACTION_METADATA: Dict[str, ActionMetadata] = {
    meta.id: meta
    for meta in (
        ActionMetadata("explain", "Explain This", "Explain selected code or text", Capability.EXPLAIN, True),
        ActionMetadata(
            "refactor",
            "Refactor Selection",
            "Improve or restructure selected code",
            Capability.REFACTOR,
            True,
            ("general", "performance", "readability", "modern", "security", "dry"),
        ),
        ActionMetadata(
            "convert",
            "Convert Format",
            "Convert between JSON, YAML, XML and TOML",
            Capability.CONVERT,
            False,
            ("json", "yaml", "xml", "toml"),
        ),
        ActionMetadata(
            "infer-schema",
            "Infer Schema",
            "Generate schema from data",
            Capability.INFER_SCHEMA,
            False,
            ("json-schema", "typescript", "zod", "yup", "io-ts"),
        ),
        ActionMetadata(
            "summarize-logs",
            "Summarize Logs",
            "Analyze and summarize log content",
            Capability.SUMMARIZE_LOGS,
            False,
            ("general", "errors", "performance", "security", "timeline"),
        ),
        ActionMetadata("generate-tests", "Generate Tests", "Create test boilerplate for code", Capability.GENERATE_TESTS, True),
        ActionMetadata("fix-syntax", "Fix Syntax", "Fix JSON/XML/YAML syntax errors", Capability.FIX_SYNTAX, False),
        ActionMetadata(
            "transform-text",
            "Transform Text",
            "Rewrite, summarize, or improve text",
            Capability.TRANSFORM_TEXT,
            True,
            ("rewrite", "rephrase", "improve", "summarize", "expand", "fix-grammar", "professional"),
        ),
    )
}

HandlerOutput = Union[ActionResult, CompletionResult, str]
ActionHandler = Callable[[ActionContext, Dict[str, Any]], Awaitable[HandlerOutput]]
StreamActionHandler = Callable[[ActionContext, ChunkCallback, Dict[str, Any]], Awaitable[HandlerOutput]]


def option_flag(options: Mapping[str, Any], key: str, default: bool) -> bool:
    """Read a boolean option that may arrive as a string from the CLI."""
    value = options.get(key, default)
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    return bool(value)


def option_int(options: Mapping[str, Any], key: str) -> Optional[int]:
    value = options.get(key)
    if value in (None, ""):
        return None
    return int(value)


async def run_completion(
    provider_manager: ProviderManager,
    options: Mapping[str, Any],
    *,
    prompt: str,
    task: str,
    language: Optional[str],
    max_tokens: int,
    temperature: float,
    extract_format: Optional[str] = None,
    system_prompt: Optional[str] = None,
    on_chunk: Optional[ChunkCallback] = None,
) -> CompletionResult:
    """Send an action prompt through the manager, streaming when ``on_chunk`` is given."""
    params = CompletionParams(
        prompt=prompt,
        language=language or None,
        model=options.get("model"),
        max_tokens=max_tokens,
        temperature=temperature,
        task=task,
        options=CallOptions(
            system_prompt=system_prompt,
            extract_format=extract_format,
            signal=options.get("signal"),
            allow_secrets=option_flag(options, "allow_secrets", False),
        ),
    )
    require = (Capability(task),)
    provider_id = options.get("provider_id")
    if on_chunk is None:
        return await provider_manager.complete(params, require=require, provider_id=provider_id)
    return await provider_manager.stream_complete(params, on_chunk, require=require, provider_id=provider_id)


def result_metadata(result: CompletionResult, **extra: Any) -> Dict[str, Any]:
    """Provider metadata plus usage and confidence, overlaid with ``extra``."""
    metadata = dict(result.metadata)
    metadata["usage"] = result.usage
    metadata["confidence"] = result.confidence
    metadata.update(extra)
    return metadata


def _normalize(action_id: str, output: HandlerOutput) -> ActionResult:
    if isinstance(output, ActionResult):
        return output
    if isinstance(output, CompletionResult):
        return ActionResult.ok(action_id, output.text, result_metadata(output))
    return ActionResult.ok(action_id, str(output))


class ActionManager:
    """
    Registry and dispatcher for actions.

    Capability and selection requirements are checked before the handler
    runs, so a rejected action never reaches the network. Every error
    raised while preparing or running a handler is converted into a failed
    ``ActionResult``.
    """

    def __init__(self, provider_manager: ProviderManager, *, max_history: int = MAX_HISTORY) -> None:
        self.provider_manager = provider_manager
        self._actions: Dict[str, ActionHandler] = {}
        self._stream_actions: Dict[str, StreamActionHandler] = {}
        self._metadata: Dict[str, ActionMetadata] = dict(ACTION_METADATA)
        self._history: Deque[ActionResult] = deque(maxlen=max_history)

    def register_action(self, action_id: str, handler: ActionHandler, metadata: Optional[ActionMetadata] = None) -> None:
        self._actions[action_id] = handler
        if metadata is not None:
            self._metadata[action_id] = metadata

    def register_stream_action(
        self,
        action_id: str,
        handler: StreamActionHandler,
        metadata: Optional[ActionMetadata] = None,
    ) -> None:
        self._stream_actions[action_id] = handler
        if metadata is not None:
            self._metadata[action_id] = metadata

    def unregister_action(self, action_id: str) -> None:
        self._actions.pop(action_id, None)
        self._stream_actions.pop(action_id, None)

    def get_action_metadata(self, action_id: str) -> Optional[ActionMetadata]:
        return self._metadata.get(action_id)

    def has_stream_action(self, action_id: str) -> bool:
        return action_id in self._stream_actions

    def get_available_actions(self) -> List[ActionMetadata]:
        """Registered actions the active provider can serve."""
        available = []
        for action_id in sorted(set(self._actions) | set(self._stream_actions)):
            meta = self._metadata.get(action_id) or ActionMetadata(action_id, action_id, "")
            if meta.capability is None or self.provider_manager.has_capability(meta.capability):
                available.append(meta)
        return available

    def get_history(self, limit: Optional[int] = None) -> List[ActionResult]:
        items = list(self._history)
        if limit is None:
            return items
        return items[-limit:] if limit > 0 else []

    def clear_history(self) -> None:
        self._history.clear()

    def _prepare(
        self,
        action_id: str,
        context: Union[ActionContext, Mapping[str, Any]],
        options: Optional[Mapping[str, Any]],
    ) -> Tuple[Optional[ActionResult], ActionContext, Dict[str, Any]]:
        ctx = context if isinstance(context, ActionContext) else ActionContext.from_mapping(context)
        opts = dict(options or {})
        meta = self._metadata.get(action_id)

        if meta is not None and meta.requires_selection and not ctx.has_selection():
            return ActionResult.failure(action_id, "This action requires a text selection"), ctx, opts

        if opts.pop("auto", False):
            selection = self.provider_manager.auto_select(len(ctx.text), action_id)
            if selection is not None:
                LOGGER.info("Auto-selected %s/%s: %s", selection.provider_id, selection.model_id, selection.reason)
                opts["provider_id"] = selection.provider_id
                opts.setdefault("model", selection.model_id)

        provider_id = opts.get("provider_id")
        provider = (
            self.provider_manager.get_provider(provider_id)
            if provider_id
            else self.provider_manager.active_provider
        )
        if provider is None:
            return ActionResult.failure(action_id, "No active AI provider configured"), ctx, opts
        if meta is not None and meta.capability is not None and not provider.has_capability(meta.capability):
            return (
                ActionResult.failure(
                    action_id,
                    f"Current provider does not support: {meta.name}",
                    {"error_code": "unsupported_capability"},
                ),
                ctx,
                opts,
            )
        return None, ctx, opts

    async def _dispatch(
        self,
        action_id: str,
        context: Union[ActionContext, Mapping[str, Any]],
        options: Optional[Mapping[str, Any]],
        invoke: Callable[[ActionContext, Dict[str, Any]], Awaitable[HandlerOutput]],
    ) -> ActionResult:
        try:
            rejected, ctx, opts = self._prepare(action_id, context, options)
            if rejected is not None:
                return rejected
            result = _normalize(action_id, await invoke(ctx, opts))
        except PrivacyBlockError as exc:
            result = ActionResult.failure(
                action_id,
                exc.message,
                {"error_code": exc.code, "findings": [f.type for f in exc.findings]},
            )
        except ProviderError as exc:
            LOGGER.warning("Action %s failed: %s", action_id, exc.message)
            result = ActionResult.failure(action_id, exc.message, {"error_code": exc.code, "retryable": exc.retryable})
        except Exception as exc:
            LOGGER.exception("Unexpected error in action %s", action_id)
            result = ActionResult.failure(action_id, str(exc) or exc.__class__.__name__)
        self._history.append(result)
        return result

    async def execute(
        self,
        action_id: str,
        context: Union[ActionContext, Mapping[str, Any]],
        options: Optional[Mapping[str, Any]] = None,
    ) -> ActionResult:
        handler = self._actions.get(action_id)
        if handler is None:
            return ActionResult.failure(action_id, f"Unknown action: {action_id}")
        return await self._dispatch(action_id, context, options, handler)

    async def execute_stream(
        self,
        action_id: str,
        context: Union[ActionContext, Mapping[str, Any]],
        on_chunk: ChunkCallback,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ActionResult:
        """Run the streaming variant of ``action_id``; there is no fallback to the plain handler."""
        handler = self._stream_actions.get(action_id)
        if handler is None:
            return ActionResult.failure(action_id, f"Action does not support streaming: {action_id}")
        return await self._dispatch(action_id, context, options, lambda ctx, opts: handler(ctx, on_chunk, opts))
