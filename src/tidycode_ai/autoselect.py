"""Pick a provider and model from content size and action type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from .providers.base import Capability, ModelInfo

LOGGER = logging.getLogger("tidycode_ai.autoselect")

CHARS_PER_TOKEN = 4
SAFETY_FACTOR = 2

# lower is faster
SPEED_TIERS = {
    "groq": 1,
    "cerebras": 1,
    "sambanova": 1,
    "ollama": 2,
}
DEFAULT_SPEED_TIER = 3


@dataclass(frozen=True)
class Selection:
    provider_id: str
    model_id: str
    reason: str


def estimate_tokens(content_length: int) -> int:
    return -(-max(content_length, 0) // CHARS_PER_TOKEN)


def required_window(content_length: int) -> int:
    """Tokens a model must offer to hold the content plus prompt and reply."""
    return estimate_tokens(content_length) * SAFETY_FACTOR


def _capability_for(action_id: Optional[str]) -> Optional[Capability]:
    if not action_id:
        return None
    try:
        return Capability(action_id)
    except ValueError:
        return None


def _default_model(provider: Any) -> Optional[ModelInfo]:
    models = provider.models or ()
    current = getattr(provider, "current_model", None)
    for model in models:
        if model.id == current:
            return model
    for model in models:
        if model.is_default:
            return model
    return models[0] if models else None


def _best_model(provider: Any, needed: int) -> Tuple[Optional[ModelInfo], bool]:
    """Current model if it fits, else the tightest fit, else the largest window."""
    models = provider.models or ()
    if not models:
        return None, False
    current = _default_model(provider)
    if current is not None and current.context_window >= needed:
        return current, True
    fitting = [m for m in models if m.context_window >= needed]
    if fitting:
        return min(fitting, key=lambda m: m.context_window), True
    return max(models, key=lambda m: m.context_window), False


def _size_label(content_length: int) -> str:
    if content_length > 1000:
        return f"{round(content_length / 1000)}K chars"
    return f"{content_length} chars"


def _window_label(window: int) -> str:
    if window >= 1_000_000:
        return f"{window / 1_000_000:.1f}M"
    return f"{round(window / 1000)}K"


def _reason(content_length: int, provider: Any, model: ModelInfo) -> str:
    return f"{provider.name} {model.name} ({_window_label(model.context_window)} ctx) for {_size_label(content_length)}"


def auto_select_provider(
    *,
    content_length: int,
    available_providers: Sequence[Any],
    action_id: Optional[str] = None,
    active_provider_id: Optional[str] = None,
) -> Optional[Selection]:
    """
    Choose a ``Selection`` among ready providers.

    Providers lacking the capability named by ``action_id`` are never
    chosen. A model qualifies when its context window is at least twice
    the estimated token count. Qualifying providers are ranked by: the
    active provider first, then speed tier, then the tightest fit. When
    nothing qualifies the largest context window wins. With a single
    candidate the heuristic is a no-op.
    """
    candidates = [p for p in available_providers if p.models]
    capability = _capability_for(action_id)
    if capability is not None:
        candidates = [p for p in candidates if capability in p.capabilities]
    if not candidates:
        return None

    if len(candidates) == 1:
        provider = candidates[0]
        model = _default_model(provider)
        return Selection(provider.id, model.id if model else "", "Only available provider")

    needed = required_window(content_length)
    fitting = []
    fallback = []
    for provider in candidates:
        model, fits = _best_model(provider, needed)
        if model is None:
            continue
        is_active = provider.id == active_provider_id
        speed = SPEED_TIERS.get(provider.id, DEFAULT_SPEED_TIER)
        if fits:
            fitting.append(((is_active, -speed, -(model.context_window - needed)), provider, model))
        else:
            fallback.append(((model.context_window, is_active, -speed), provider, model))

    pool = fitting or fallback
    if not pool:
        return None
    _, provider, model = max(pool, key=lambda item: item[0])
    if not fitting:
        LOGGER.info("No model fits %s tokens; using largest window %s", needed, model.id)
    return Selection(provider.id, model.id, _reason(content_length, provider, model))
