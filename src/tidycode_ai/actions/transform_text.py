"""Rewrite, summarize or otherwise transform prose."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..manager import ProviderManager
from ..providers.base import ChunkCallback
from .manager import ActionContext, ActionResult, result_metadata, run_completion

ACTION_ID = "transform-text"

SYSTEM_PROMPT = "You are a helpful writing assistant. Output only the transformed text, no explanations."

TRANSFORM_MODES = {
    "rewrite": "Rewrite the following text to be clearer and more concise while maintaining the original meaning:",
    "rephrase": "Rephrase the following text using different words while keeping the same meaning:",
    "improve": "Improve the following text by making it more professional and well-structured:",
    "summarize": "Summarize the following text concisely:",
    "expand": "Expand on the following text with more details and examples:",
    "fix-grammar": "Fix any grammar and spelling errors in the following text:",
    "professional": "Rewrite the following text in a professional, business-appropriate tone:",
}


def build_prompt(text: str, mode: str) -> str:
    instruction = TRANSFORM_MODES.get(mode, "Process the following text:")
    return f"{instruction}\n\n{text}"


async def _transform(
    provider_manager: ProviderManager,
    context: ActionContext,
    options: Dict[str, Any],
    on_chunk: Optional[ChunkCallback] = None,
) -> ActionResult:
    text = context.text
    if not text.strip():
        return ActionResult.failure(ACTION_ID, "No text to transform")
    mode = options.get("mode", "rewrite")
    if mode not in TRANSFORM_MODES:
        return ActionResult.failure(ACTION_ID, f"Unknown transform mode: {mode}")

    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(text, mode),
        task=ACTION_ID,
        language=None,
        max_tokens=4000,
        temperature=0.7,
        system_prompt=SYSTEM_PROMPT,
        on_chunk=on_chunk,
    )
    # an empty reply leaves the text untouched
    transformed = result.text.strip() or text
    return ActionResult.ok(ACTION_ID, transformed, result_metadata(result, mode=mode))


async def transform_text_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    return await _transform(provider_manager, context, options)


async def transform_text_stream_action(
    provider_manager: ProviderManager,
    context: ActionContext,
    on_chunk: ChunkCallback,
    options: Dict[str, Any],
) -> ActionResult:
    return await _transform(provider_manager, context, options, on_chunk)
