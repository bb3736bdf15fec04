"""Summarize log content with a chosen analysis focus."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..manager import ProviderManager
from ..providers.base import ChunkCallback
from .manager import ActionContext, ActionResult, option_int, result_metadata, run_completion

ACTION_ID = "summarize-logs"

ERROR_RE = re.compile(r"\b(error|err|exception|fail|fatal)\b", re.IGNORECASE)
WARNING_RE = re.compile(r"\b(warn|warning)\b", re.IGNORECASE)


@dataclass(frozen=True)
class AnalysisType:
    name: str
    description: str
    instruction: str


ANALYSIS_TYPES: Dict[str, AnalysisType] = {
    "general": AnalysisType(
        "General Summary",
        "Overall summary with key events and patterns",
        "provide a comprehensive summary including:\n"
        "- Time range covered (if timestamps are present)\n"
        "- Key events and their frequency\n"
        "- Errors or warnings (with counts)\n"
        "- Notable patterns or anomalies\n"
        "- Recommendations if applicable",
    ),
    "errors": AnalysisType(
        "Error Analysis",
        "Focus on errors and their root causes",
        "focus on error analysis:\n"
        "- List all unique errors with occurrence counts\n"
        "- Identify error patterns and potential root causes\n"
        "- Highlight critical vs non-critical issues\n"
        "- Suggest investigation priorities\n"
        "- Identify any error cascades or chains",
    ),
    "performance": AnalysisType(
        "Performance Analysis",
        "Analyze performance indicators",
        "analyze performance indicators:\n"
        "- Response times and latencies (if present)\n"
        "- Throughput patterns\n"
        "- Bottleneck indicators\n"
        "- Slow queries or operations\n"
        "- Memory or CPU issues",
    ),
    "security": AnalysisType(
        "Security Analysis",
        "Security-focused log analysis",
        "perform a security-focused analysis:\n"
        "- Authentication/authorization events\n"
        "- Failed login attempts and patterns\n"
        "- IP addresses or users of interest\n"
        "- Access to sensitive resources\n"
        "- Potential security concerns",
    ),
    "timeline": AnalysisType(
        "Timeline",
        "Chronological event timeline",
        "create a chronological timeline:\n"
        "- Major events in order\n"
        "- State changes\n"
        "- Error occurrences with timestamps\n"
        "- Recovery events\n"
        "- Duration between significant events",
    ),
}


def build_prompt(content: str, analysis_type: str) -> str:
    analysis = ANALYSIS_TYPES.get(analysis_type, ANALYSIS_TYPES["general"])
    return (
        f"Analyze the following log content and {analysis.instruction}\n\n"
        "Format your response in clear markdown with:\n"
        "- Sections and headers\n"
        "- Bullet points for lists\n"
        "- Code blocks for specific log entries\n"
        "- Tables where appropriate for counts/statistics\n\n"
        f"Log content:\n```\n{content}\n```\n\n"
        "Provide a clear, actionable analysis."
    )


def truncate_lines(content: str, max_lines: Optional[int]) -> Tuple[str, bool]:
    if not max_lines:
        return content, False
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content, False
    return "\n".join(lines[:max_lines]), True


def log_stats(content: str) -> Dict[str, int]:
    return {
        "line_count": len(content.split("\n")),
        "error_count": len(ERROR_RE.findall(content)),
        "warning_count": len(WARNING_RE.findall(content)),
    }


async def _summarize(
    provider_manager: ProviderManager,
    context: ActionContext,
    options: Dict[str, Any],
    on_chunk: Optional[ChunkCallback] = None,
) -> ActionResult:
    content = context.text
    if not content.strip():
        return ActionResult.failure(ACTION_ID, "No log content to analyze")

    analysis_type = options.get("type", "general")
    if analysis_type not in ANALYSIS_TYPES:
        return ActionResult.failure(ACTION_ID, f"Unknown analysis type: {analysis_type}")

    log_content, truncated = truncate_lines(content, option_int(options, "max_lines"))
    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(log_content, analysis_type),
        task=ACTION_ID,
        language="markdown",
        max_tokens=2048,
        temperature=0.3,
        on_chunk=on_chunk,
    )
    return ActionResult.ok(
        ACTION_ID,
        result.text,
        result_metadata(
            result,
            analysis_type=analysis_type,
            analysis_type_name=ANALYSIS_TYPES[analysis_type].name,
            truncated=truncated,
            **log_stats(content),
        ),
    )


async def summarize_logs_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    return await _summarize(provider_manager, context, options)


async def summarize_logs_stream_action(
    provider_manager: ProviderManager,
    context: ActionContext,
    on_chunk: ChunkCallback,
    options: Dict[str, Any],
) -> ActionResult:
    return await _summarize(provider_manager, context, options, on_chunk)
