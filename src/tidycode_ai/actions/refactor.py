"""Refactor selected code toward a chosen goal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..extract import strip_code_fence
from ..manager import ProviderManager
from ..providers.base import ChunkCallback
from .manager import ActionContext, ActionResult, option_flag, result_metadata, run_completion

ACTION_ID = "refactor"


@dataclass(frozen=True)
class RefactorType:
    name: str
    description: str
    focus: Tuple[str, ...]


REFACTOR_TYPES: Dict[str, RefactorType] = {
    "general": RefactorType(
        "General Cleanup",
        "Improve overall code quality",
        ("clarity", "naming", "structure", "remove dead code"),
    ),
    "performance": RefactorType(
        "Performance",
        "Optimize for speed and efficiency",
        ("algorithmic complexity", "unnecessary allocations", "caching", "loop optimization"),
    ),
    "readability": RefactorType(
        "Readability",
        "Make code easier to understand",
        ("descriptive names", "smaller functions", "consistent formatting", "clear control flow"),
    ),
    "modern": RefactorType(
        "Modernize",
        "Use modern language features",
        ("current syntax", "standard library idioms", "deprecated API replacement"),
    ),
    "security": RefactorType(
        "Security",
        "Fix security issues",
        ("input validation", "injection risks", "secret handling", "safe defaults"),
    ),
    "dry": RefactorType(
        "DRY",
        "Remove duplication",
        ("extract shared logic", "reusable helpers", "consolidate constants"),
    ),
}


def build_prompt(context: ActionContext, options: Dict[str, Any]) -> str:
    refactor_type = REFACTOR_TYPES.get(options.get("type", "general"), REFACTOR_TYPES["general"])
    language = context.language or "code"
    lines = [
        f"Refactor the following {language} code.",
        f"Goal: {refactor_type.description}.",
        "Focus on: " + ", ".join(refactor_type.focus) + ".",
        "Preserve the existing behaviour exactly.",
    ]
    if option_flag(options, "preserve_comments", True):
        lines.append("Keep existing comments where they still apply.")
    lines.append("Return only the refactored code without explanations.")
    return "\n".join(lines) + f"\n\n```{context.language}\n{context.text}\n```"


async def _refactor(
    provider_manager: ProviderManager,
    context: ActionContext,
    options: Dict[str, Any],
    on_chunk: Optional[ChunkCallback] = None,
) -> ActionResult:
    if not context.text.strip():
        return ActionResult.failure(ACTION_ID, "Nothing to refactor")
    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(context, options),
        task=ACTION_ID,
        language=context.language,
        max_tokens=4096,
        temperature=0.2,
        on_chunk=on_chunk,
    )
    metadata = result_metadata(result, refactor_type=options.get("type", "general"))
    return ActionResult.ok(ACTION_ID, strip_code_fence(result.text).strip(), metadata)


async def refactor_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    return await _refactor(provider_manager, context, options)


async def refactor_stream_action(
    provider_manager: ProviderManager,
    context: ActionContext,
    on_chunk: ChunkCallback,
    options: Dict[str, Any],
) -> ActionResult:
    return await _refactor(provider_manager, context, options, on_chunk)
