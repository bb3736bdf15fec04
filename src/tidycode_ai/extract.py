"""Helpers for salvaging structured content from model replies."""

from __future__ import annotations

import re
from typing import Optional

_FENCE_RE = re.compile(r"```[\w+-]*[ \t]*\n?(.*?)```", re.DOTALL)
_OPENERS = {"{": "}", "[": "]"}


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match is None:
        return text
    return match.group(1)


def _balanced_json(text: str) -> Optional[str]:
    start = next((i for i, ch in enumerate(text) if ch in _OPENERS), None)
    if start is None:
        return None
    opener = text[start]
    closer = _OPENERS[opener]
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _outer_xml(text: str) -> Optional[str]:
    first = text.find("<")
    last = text.rfind(">")
    if first == -1 or last <= first:
        return None
    return text[first : last + 1]


def extract_content(text: str, expected_format: Optional[str] = None) -> str:
    """
    Strip markdown fences and surrounding commentary from a reply.

    For ``json`` the result is trimmed to the first balanced top-level
    object or array; for ``xml`` to the span between the first ``<`` and
    the last ``>``. Other formats only lose the fence.
    """
    result = strip_code_fence(text.strip())
    if expected_format == "json":
        result = _balanced_json(result) or result
    elif expected_format == "xml":
        result = _outer_xml(result) or result
    return result.strip()
