"""Provider registry exports."""

from typing import Callable, Dict

from .anthropic import ClaudeProvider, create_claude_provider
from .base import (
    BaseProvider,
    CallOptions,
    CancellationSignal,
    Capability,
    CapabilityError,
    ChatMessage,
    CompletionParams,
    CompletionResult,
    ModelInfo,
    ModelStatus,
    PrivacyBlockError,
    ProviderAuthError,
    ProviderCancelledError,
    ProviderDescriptor,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderServerError,
    ProviderValidationError,
    TokenUsage,
)
from .gemini import GeminiProvider, create_gemini_provider
from .ollama import OllamaProvider, create_ollama_provider
from .openai_compat import (
    OpenAICompatibleProvider,
    create_groq_provider,
    create_mistral_provider,
    create_openai_provider,
)

ProviderFactory = Callable[..., BaseProvider]

PROVIDER_FACTORIES: Dict[str, ProviderFactory] = {
    "claude": create_claude_provider,
    "openai": create_openai_provider,
    "gemini": create_gemini_provider,
    "groq": create_groq_provider,
    "mistral": create_mistral_provider,
    "ollama": create_ollama_provider,
}

__all__ = [
    "BaseProvider",
    "CallOptions",
    "CancellationSignal",
    "Capability",
    "CapabilityError",
    "ChatMessage",
    "ClaudeProvider",
    "CompletionParams",
    "CompletionResult",
    "GeminiProvider",
    "ModelInfo",
    "ModelStatus",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_FACTORIES",
    "PrivacyBlockError",
    "ProviderAuthError",
    "ProviderCancelledError",
    "ProviderDescriptor",
    "ProviderError",
    "ProviderFactory",
    "ProviderNetworkError",
    "ProviderRateLimitError",
    "ProviderRequestError",
    "ProviderServerError",
    "ProviderValidationError",
    "TokenUsage",
]
