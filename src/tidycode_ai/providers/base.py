"""Provider abstractions shared by every vendor adapter."""

from __future__ import annotations

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from ..extract import extract_content

ChunkCallback = Callable[[str, bool], Union[None, Awaitable[None]]]


class Capability(str, Enum):
    """Operation and action tags a provider may advertise."""

    COMPLETION = "completion"
    CHAT = "chat"
    STREAM = "stream"
    VISION = "vision"
    CODE_EXECUTION = "code-execution"
    EXPLAIN = "explain"
    REFACTOR = "refactor"
    CONVERT = "convert"
    INFER_SCHEMA = "infer-schema"
    SUMMARIZE_LOGS = "summarize-logs"
    GENERATE_TESTS = "generate-tests"
    FIX_SYNTAX = "fix-syntax"
    TRANSFORM_TEXT = "transform-text"


TEXT_CAPABILITIES: FrozenSet[Capability] = frozenset(
    {
        Capability.COMPLETION,
        Capability.CHAT,
        Capability.STREAM,
        Capability.EXPLAIN,
        Capability.REFACTOR,
        Capability.CONVERT,
        Capability.INFER_SCHEMA,
        Capability.SUMMARIZE_LOGS,
        Capability.GENERATE_TESTS,
        Capability.FIX_SYNTAX,
        Capability.TRANSFORM_TEXT,
    }
)


class ModelStatus(str, Enum):
    STABLE = "stable"
    PREVIEW = "preview"
    DEPRECATED = "deprecated"


@dataclass(frozen=True)
class ModelInfo:
    """Static description of one model offered by a provider."""

    id: str
    name: str
    context_window: int = 4096
    is_default: bool = False
    supports_vision: bool = False
    supports_streaming: bool = True
    status: ModelStatus = ModelStatus.STABLE
    description: str = ""


@dataclass(frozen=True)
class ProviderDescriptor:
    """Immutable identity and catalogue of a provider adapter."""

    id: str
    display_name: str
    models: Tuple[ModelInfo, ...]
    capabilities: FrozenSet[Capability]
    base_url: str
    requires_api_key: bool = True
    api_key_prefix: Optional[str] = None
    api_version: Optional[str] = None
    system_instruction_exclusions: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.models:
            raise ProviderValidationError(self.display_name, "Provider must declare at least one model")


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls("system", content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls("user", content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls("assistant", content)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class CompletionResult:
    """Terminal result of every completion or chat call."""

    text: str
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    usage: Optional[TokenUsage] = None


class CancellationSignal:
    """Cooperative cancellation token checked between stream reads."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class CallOptions:
    """Per-call options shared by completion and chat entry points."""

    system_prompt: Optional[str] = None
    extract_format: Optional[str] = None
    signal: Optional[CancellationSignal] = None
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    allow_secrets: bool = False


@dataclass(frozen=True)
class CompletionParams:
    """Normalized single-prompt request passed to provider adapters."""

    prompt: str
    language: Optional[str] = None
    model: Optional[str] = None
    max_tokens: int = 2048
    temperature: float = 0.2
    task: str = "completion"
    options: CallOptions = field(default_factory=CallOptions)

    def with_prompt(self, prompt: str) -> "CompletionParams":
        return replace(self, prompt=prompt)


@dataclass(frozen=True)
class StreamFrame:
    """Decoded content of one vendor streaming frame."""

    text: str = ""
    done: bool = False
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None


class ProviderError(Exception):
    """Standard error raised by provider adapters."""

    default_code = "provider_error"
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.details = details or {}


class ProviderAuthError(ProviderError):
    default_code = "auth"


class ProviderRateLimitError(ProviderError):
    default_code = "rate_limited"
    default_retryable = True


class ProviderServerError(ProviderError):
    default_code = "server_error"
    default_retryable = True


class ProviderNetworkError(ProviderError):
    default_code = "network"
    default_retryable = True


class ProviderCancelledError(ProviderNetworkError):
    default_code = "cancelled"
    default_retryable = False


class ProviderRequestError(ProviderError):
    default_code = "request_error"


class CapabilityError(ProviderError):
    default_code = "unsupported_capability"


class ProviderValidationError(ProviderError):
    """Malformed provider configuration, raised before any network call."""

    default_code = "validation"

    def __init__(self, provider_name: str, message: str, **kwargs: Any):
        super().__init__(f"{provider_name}: {message}", **kwargs)


class PrivacyBlockError(ProviderError):
    """Outgoing content contained secrets; the message is the JSON findings list."""

    default_code = "privacy_block"

    def __init__(self, findings: Sequence[Any], **kwargs: Any):
        self.findings = list(findings)
        payload = [{"type": f.type, "match": f.match_preview, "index": f.index} for f in self.findings]
        super().__init__(json.dumps(payload), **kwargs)


async def emit_chunk(on_chunk: ChunkCallback, text: str, done: bool) -> None:
    """Invoke a chunk callback that may be either sync or async."""
    outcome = on_chunk(text, done)
    if inspect.isawaitable(outcome):
        await outcome


def split_system_message(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[ChatMessage]]:
    """Pull the first system message out of a conversation."""
    system: Optional[str] = None
    rest: List[ChatMessage] = []
    for message in messages:
        if message.role == "system":
            if system is None:
                system = message.content
            continue
        rest.append(message)
    return system, rest


_BASE_PROMPT = "You are an expert programming assistant."

_TASK_PROMPTS = {
    "completion": f"{_BASE_PROMPT} Provide concise, production-ready code completions.",
    "explain": f"{_BASE_PROMPT} Explain code clearly and concisely.",
    "refactor": f"{_BASE_PROMPT} Refactor code to improve quality while preserving functionality.",
    "fix-syntax": f"{_BASE_PROMPT} Fix syntax errors in the provided content.",
    "convert": f"{_BASE_PROMPT} Convert content between formats accurately.",
    "infer-schema": f"{_BASE_PROMPT} Generate accurate schemas from data.",
    "summarize-logs": f"{_BASE_PROMPT} Analyze and summarize log content.",
    "generate-tests": f"{_BASE_PROMPT} Generate comprehensive test cases.",
    "transform-text": "You are an expert editor. Transform text as instructed while preserving its meaning.",
}

DEFAULT_CHAT_SYSTEM_PROMPT = "You are a helpful assistant."


class BaseProvider(ABC):
    """
    Abstract base class for vendor adapters.

    Holds the static descriptor plus the mutable runtime state
    (API key, selected model, initialized flag). Per-call state such as
    stream buffers and accumulated text must stay local to each call so
    concurrent calls against one adapter never share it.
    """

    family: str = ""

    def __init__(self, descriptor: ProviderDescriptor, *, timeout: float = 60.0):
        self.descriptor = descriptor
        self.timeout = timeout
        self.api_key: Optional[str] = None
        self.selected_model_id: Optional[str] = None
        self._base_url_override: Optional[str] = None
        self._initialized = False

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.display_name

    @property
    def models(self) -> Tuple[ModelInfo, ...]:
        return self.descriptor.models

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return self.descriptor.capabilities

    @property
    def base_url(self) -> str:
        return (self._base_url_override or self.descriptor.base_url).rstrip("/")

    @property
    def requires_api_key(self) -> bool:
        return self.descriptor.requires_api_key

    async def initialize(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        """Apply runtime credentials and mark the adapter initialized."""
        if api_key:
            self.api_key = api_key
        if model:
            self.selected_model_id = model
        if base_url:
            self._base_url_override = base_url
        self._initialized = True

    def is_ready(self) -> bool:
        if self.requires_api_key and not self.api_key:
            return False
        return self._initialized

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def get_default_model(self) -> ModelInfo:
        for model in self.models:
            if model.is_default:
                return model
        return self.models[0]

    def get_model(self, model_id: Optional[str]) -> Optional[ModelInfo]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    def get_current_model_id(self) -> str:
        return self.selected_model_id or self.get_default_model().id

    def validate_api_key_format(self, api_key: Optional[str]) -> bool:
        if not api_key or not isinstance(api_key, str):
            return False
        prefix = self.descriptor.api_key_prefix
        if prefix:
            return api_key.startswith(prefix) and len(api_key) > 20
        return len(api_key) > 10

    def build_system_prompt(self, task: str, *, language: Optional[str] = None) -> str:
        prompt = _TASK_PROMPTS.get(task, _BASE_PROMPT)
        if language:
            prompt += f"\nLanguage: {language}"
        return prompt

    def resolve_system_prompt(self, params: CompletionParams) -> str:
        return params.options.system_prompt or self.build_system_prompt(params.task, language=params.language)

    def resolve_chat_system_prompt(self, messages: Sequence[ChatMessage], options: CallOptions) -> Tuple[str, List[ChatMessage]]:
        """Return the effective system prompt and the remaining conversation."""
        inline, rest = split_system_message(messages)
        return options.system_prompt or inline or DEFAULT_CHAT_SYSTEM_PROMPT, rest

    def finalize_text(self, text: str, options: CallOptions) -> str:
        if options.extract_format:
            return extract_content(text, options.extract_format)
        return text

    def chat_settings(self, options: CallOptions) -> Tuple[str, int, float]:
        """Model, max tokens and temperature for a chat call."""
        model = options.model or self.get_current_model_id()
        max_tokens = options.max_tokens or 2048
        temperature = 0.7 if options.temperature is None else options.temperature
        return model, max_tokens, temperature

    def _require_ready(self) -> None:
        if self.requires_api_key and not self.api_key:
            raise ProviderValidationError(self.name, "API key is required")

    async def aclose(self) -> None:
        """Release HTTP resources held by the adapter."""
        return None

    @abstractmethod
    async def validate_config(self) -> Dict[str, Any]:
        """Probe the vendor with a side-effect free call; never raises."""

    @abstractmethod
    async def complete(self, params: CompletionParams) -> CompletionResult:
        """Send one non-streaming completion request."""

    @abstractmethod
    async def stream_complete(self, params: CompletionParams, on_chunk: ChunkCallback) -> CompletionResult:
        """Stream a completion, delivering deltas to ``on_chunk``."""

    @abstractmethod
    async def chat(self, messages: Sequence[ChatMessage], options: Optional[CallOptions] = None) -> CompletionResult:
        """Send a conversation and wait for the full reply."""

    @abstractmethod
    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: ChunkCallback,
        options: Optional[CallOptions] = None,
    ) -> CompletionResult:
        """Stream the reply to a conversation."""

    @abstractmethod
    def calculate_confidence(self, raw_response: Any) -> float:
        """Advisory score derived from the vendor's stop/finish reason."""
