"""Generate schema or type definitions from sample data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from ..extract import strip_code_fence
from ..manager import ProviderManager
from .manager import ActionContext, ActionResult, option_flag, result_metadata, run_completion

ACTION_ID = "infer-schema"


@dataclass(frozen=True)
class SchemaFormat:
    name: str
    description: str
    language: str
    extension: str


SCHEMA_FORMATS: Dict[str, SchemaFormat] = {
    "json-schema": SchemaFormat("JSON Schema", "JSON Schema (draft-07) for validation", "json", ".schema.json"),
    "typescript": SchemaFormat("TypeScript", "TypeScript interface definitions", "typescript", ".d.ts"),
    "zod": SchemaFormat("Zod", "Zod schema for runtime validation", "typescript", ".schema.ts"),
    "yup": SchemaFormat("Yup", "Yup schema for form validation", "typescript", ".schema.ts"),
    "io-ts": SchemaFormat("io-ts", "io-ts codecs for TypeScript", "typescript", ".codec.ts"),
}


def _instructions(fmt: str, type_name: str) -> str:
    if fmt == "json-schema":
        return (
            "Generate a JSON Schema (draft-07) that validates this data.\n\n"
            "Include:\n"
            "- Appropriate types for all fields\n"
            '- "required" array listing required fields\n'
            '- "description" for complex fields\n'
            "- Pattern validation for strings where applicable (emails, URLs, dates, UUIDs)\n"
            "- Enum constraints where values appear limited\n"
            "- Minimum/maximum for numbers if patterns are visible"
        )
    if fmt == "typescript":
        return (
            "Generate TypeScript type definitions for this data.\n\n"
            "Include:\n"
            "- Interface definitions with proper typing\n"
            "- Optional fields marked with ?\n"
            "- Nested interfaces for complex objects\n"
            "- Union types if values suggest multiple possibilities\n"
            "- Export statements\n"
            f'- Use "{type_name}" as the main type name'
        )
    if fmt == "zod":
        return (
            "Generate Zod schema definitions for this data.\n\n"
            "Include:\n"
            "- Proper Zod validators for each field (z.string(), z.number(), etc.)\n"
            "- Optional/nullable handling with .optional() or .nullable()\n"
            "- String refinements (.email(), .url(), .uuid()) where applicable\n"
            "- Export statement\n"
            f'- Use "{type_name}Schema" as the schema name\n'
            f"- Include type inference: type {type_name} = z.infer<typeof {type_name}Schema>"
        )
    if fmt == "yup":
        return (
            "Generate Yup schema definitions for this data.\n\n"
            "Include:\n"
            "- Proper Yup validators (yup.string(), yup.number(), etc.)\n"
            "- Required/optional handling\n"
            "- Nested object and array schemas\n"
            "- Export statement"
        )
    return (
        "Generate io-ts codec definitions for this data.\n\n"
        "Include:\n"
        "- Proper codecs (t.string, t.number, t.type, etc.)\n"
        "- Optional fields with t.partial\n"
        "- Array codecs with t.array\n"
        "- Export statement"
    )


def build_prompt(content: str, fmt: str, *, type_name: str, strict: bool) -> str:
    schema = SCHEMA_FORMATS[fmt]
    strictness = (
        'Be strict with types - prefer specific types over "any" or "unknown".'
        if strict
        else "Allow flexibility with types where data is ambiguous."
    )
    return (
        f"Analyze the following data and generate {schema.name} definitions.\n\n"
        f"{_instructions(fmt, type_name)}\n\n"
        f"{strictness}\n\n"
        f"Sample data:\n```json\n{content}\n```\n\n"
        f"Return ONLY the {schema.name} code, no explanations."
    )


async def infer_schema_action(
    provider_manager: ProviderManager, context: ActionContext, options: Dict[str, Any]
) -> ActionResult:
    content = context.text
    if not content.strip():
        return ActionResult.failure(ACTION_ID, "No content to analyze")

    fmt = options.get("format", "json-schema")
    if fmt not in SCHEMA_FORMATS:
        return ActionResult.failure(ACTION_ID, f"Unsupported format: {fmt}")
    type_name = options.get("type_name") or "GeneratedType"
    schema = SCHEMA_FORMATS[fmt]

    result = await run_completion(
        provider_manager,
        options,
        prompt=build_prompt(content, fmt, type_name=type_name, strict=option_flag(options, "strict", True)),
        task=ACTION_ID,
        language=schema.language,
        max_tokens=4096,
        temperature=0.2,
    )
    return ActionResult.ok(
        ACTION_ID,
        strip_code_fence(result.text).strip(),
        result_metadata(
            result,
            format=fmt,
            format_name=schema.name,
            language=schema.language,
            extension=schema.extension,
            type_name=type_name,
            input_length=len(content),
        ),
    )
