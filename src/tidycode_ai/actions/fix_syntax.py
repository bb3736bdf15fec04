"""Repair syntax errors in JSON, XML or YAML content."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from ..manager import ProviderManager
from .convert import detect_format, validate_format
from .manager import ActionContext, ActionResult, result_metadata, run_completion

ACTION_ID = "fix-syntax"

FIXABLE_FORMATS = ("json", "xml", "yaml")


def describe_errors(error_details: Any) -> str:
    """Render parser errors as ``Line N: message`` lines."""
    if not error_details:
        return "Unknown syntax error"
    if isinstance(error_details, str):
        return error_details
    if isinstance(error_details, Mapping):
        all_errors = error_details.get("all_errors") or []
        if all_errors:
            return "\n".join(f"Line {e.get('line', '?')}: {e.get('message', '')}" for e in all_errors)
        return str(error_details.get("message") or "Unknown syntax error")
    return str(error_details)


def _resolve_format(context: ActionContext, options: Mapping[str, Any]) -> Optional[str]:
    explicit = options.get("format")
    if not explicit and isinstance(context.error_details, Mapping):
        explicit = context.error_details.get("type")
    if explicit:
        return str(explicit).lower()
    detected = detect_format(context.text)
    if detected:
        return detected
    language = (context.language or "").lower()
    return language if language in FIXABLE_FORMATS else None


def build_prompt(content: str, fmt: str, errors: str) -> str:
    label = fmt.upper()
    return (
        f"You are a {label} syntax error fixer. Your task is to fix ONLY the syntax errors in the provided content.\n\n"
        f"Errors found:\n{errors}\n\n"
        f"Content to fix:\n{content}\n\n"
        "Instructions:\n"
        "1. Fix ONLY the syntax errors listed above\n"
        "2. Preserve all data and structure\n"
        "3. Do not add explanations or comments\n"
        f"4. Return ONLY the complete corrected {label}\n"
        f"5. Ensure the output is valid {label}\n\n"
        f"Fixed {label}:"
    )


def system_prompt_for(fmt: str) -> str:
    label = fmt.upper()
    return f"You are a {label} syntax error fixing assistant. Only output valid {label}, nothing else."


async def fix_syntax_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    content = context.text
    if not content.strip():
        return ActionResult.failure(ACTION_ID, "No content to fix")

    fmt = _resolve_format(context, options)
    if fmt not in FIXABLE_FORMATS:
        return ActionResult.failure(ACTION_ID, f"Unsupported format for syntax fixing: {fmt or 'unknown'}")

    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(content, fmt, describe_errors(context.error_details)),
        task=ACTION_ID,
        language=fmt,
        max_tokens=8192,
        temperature=0.1,
        extract_format=fmt,
        system_prompt=system_prompt_for(fmt),
    )
    fixed = result.text
    return ActionResult.ok(
        ACTION_ID,
        fixed,
        result_metadata(result, format=fmt, valid=validate_format(fixed, fmt)["valid"]),
    )
