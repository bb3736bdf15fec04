"""Convert structured content between JSON, YAML, XML and TOML."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..extract import strip_code_fence
from ..manager import ProviderManager
from .manager import ActionContext, ActionResult, result_metadata, run_completion

ACTION_ID = "convert"


@dataclass(frozen=True)
class FormatInfo:
    name: str
    extensions: Tuple[str, ...]
    mime_types: Tuple[str, ...]


SUPPORTED_FORMATS: Dict[str, FormatInfo] = {
    "json": FormatInfo("JSON", (".json",), ("application/json",)),
    "yaml": FormatInfo("YAML", (".yaml", ".yml"), ("application/x-yaml", "text/yaml")),
    "xml": FormatInfo("XML", (".xml",), ("application/xml", "text/xml")),
    "toml": FormatInfo("TOML", (".toml",), ("application/toml",)),
}

_XML_TAG_RE = re.compile(r"<[a-zA-Z][\w-]*")
_YAML_LINE_RE = re.compile(r"^\s*[\w-]+:|^\s*-\s")
_TOML_TABLE_RE = re.compile(r"^\[[\w.-]+\]", re.MULTILINE)
_TOML_LINE_RE = re.compile(r"^\[[\w.-]+\]|^[\w-]+\s*=")


def detect_format(content: str) -> Optional[str]:
    """Best-effort guess of the format of ``content``; ``None`` when unknown."""
    trimmed = content.strip()

    if trimmed.startswith(("{", "[")):
        try:
            json.loads(trimmed)
            return "json"
        except ValueError:
            pass

    if trimmed.startswith("<") and ">" in trimmed:
        if trimmed.startswith("<?xml") or _XML_TAG_RE.search(trimmed):
            return "xml"

    if (": " in trimmed or ":\n" in trimmed) and not trimmed.startswith(("{", "<")):
        lines = trimmed.split("\n")
        yaml_like = [line for line in lines if _YAML_LINE_RE.match(line)]
        if len(yaml_like) > len(lines) * 0.3:
            return "yaml"

    if "[" in trimmed and _TOML_TABLE_RE.search(trimmed):
        if any(_TOML_LINE_RE.match(line.strip()) for line in trimmed.split("\n")):
            return "toml"

    return None


def validate_format(content: str, fmt: str) -> Dict[str, Any]:
    trimmed = content.strip()
    if fmt == "json":
        try:
            json.loads(trimmed)
        except ValueError as exc:
            return {"valid": False, "error": str(exc)}
        return {"valid": True}
    if fmt == "xml":
        if not trimmed.startswith("<"):
            return {"valid": False, "error": "XML must start with <"}
        if not _XML_TAG_RE.search(trimmed):
            return {"valid": False, "error": "No valid XML tags found"}
        return {"valid": True}
    if fmt in ("yaml", "toml"):
        return {"valid": bool(trimmed)}
    return {"valid": False, "error": f"Unknown format: {fmt}"}


def get_conversion_options(source_format: Optional[str]) -> List[str]:
    return [fmt for fmt in SUPPORTED_FORMATS if fmt != source_format]


def _format_name(fmt: str) -> str:
    info = SUPPORTED_FORMATS.get(fmt)
    return info.name if info else fmt.upper()


def build_prompt(content: str, source_format: str, target_format: str) -> str:
    source = _format_name(source_format)
    target = _format_name(target_format)
    return (
        f"Convert the following {source} to {target}.\n\n"
        "Requirements:\n"
        "1. Preserve all data exactly\n"
        f"2. Use proper {target} syntax and conventions\n"
        "3. Maintain hierarchical structure\n"
        "4. Use appropriate indentation (2 spaces)\n"
        "5. Return ONLY the converted content, no explanations\n\n"
        f"Source {source}:\n```{source_format}\n{content}\n```\n\n"
        f"Converted {target}:"
    )


async def convert_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    content = context.text
    if not content.strip():
        return ActionResult.failure(ACTION_ID, "No content to convert")

    target_format = options.get("target_format")
    if not target_format:
        return ActionResult.failure(ACTION_ID, "Target format is required")
    if target_format not in SUPPORTED_FORMATS:
        return ActionResult.failure(ACTION_ID, f"Unsupported target format: {target_format}")

    source_format = options.get("source_format") or detect_format(content)
    if not source_format:
        return ActionResult.failure(ACTION_ID, "Unable to detect source format. Please specify the source format.")
    if source_format == target_format:
        return ActionResult.failure(ACTION_ID, f"Content is already in {target_format} format")

    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(content, source_format, target_format),
        task=ACTION_ID,
        language=target_format,
        max_tokens=8192,
        temperature=0.1,
        extract_format=target_format if target_format in ("json", "xml") else None,
    )
    converted = strip_code_fence(result.text).strip()
    return ActionResult.ok(
        ACTION_ID,
        converted,
        result_metadata(
            result,
            source_format=source_format,
            target_format=target_format,
            source_length=len(content),
            target_length=len(converted),
        ),
    )
