"""Explain selected code or text at a chosen level of detail."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..manager import ProviderManager
from ..providers.base import ChunkCallback
from .manager import ActionContext, ActionResult, result_metadata, run_completion

ACTION_ID = "explain"

DETAIL_LEVELS = {
    "brief": "Give a brief, one-paragraph explanation.",
    "normal": "Explain what this does, how it works, and any notable patterns.",
    "detailed": (
        "Give a detailed, step-by-step explanation covering the logic, data flow, "
        "edge cases and potential issues."
    ),
}

AUDIENCES = {
    "beginner": "Assume the reader is new to programming and define any jargon.",
    "intermediate": "Assume the reader knows the language basics.",
    "expert": "Assume the reader is an experienced engineer; skip the basics.",
}


def build_prompt(context: ActionContext, options: Dict[str, Any]) -> str:
    detail = DETAIL_LEVELS.get(options.get("detail", "normal"), DETAIL_LEVELS["normal"])
    audience = AUDIENCES.get(options.get("audience", "intermediate"), AUDIENCES["intermediate"])
    language = context.language or "code"
    parts = [f"Explain the following {language}.", detail, audience]
    if context.file_name:
        parts.append(f"It comes from the file {context.file_name}.")
    return "\n".join(parts) + f"\n\n```{context.language}\n{context.text}\n```"


async def _explain(
    provider_manager: ProviderManager,
    context: ActionContext,
    options: Dict[str, Any],
    on_chunk: Optional[ChunkCallback] = None,
) -> ActionResult:
    if not context.text.strip():
        return ActionResult.failure(ACTION_ID, "Nothing to explain")
    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(context, options),
        task=ACTION_ID,
        language=context.language,
        max_tokens=2048,
        temperature=0.3,
        on_chunk=on_chunk,
    )
    return ActionResult.ok(ACTION_ID, result.text, result_metadata(result))


async def explain_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    return await _explain(provider_manager, context, options)


async def explain_stream_action(
    provider_manager: ProviderManager,
    context: ActionContext,
    on_chunk: ChunkCallback,
    options: Dict[str, Any],
) -> ActionResult:
    return await _explain(provider_manager, context, options, on_chunk)
