"""
Secret scanning, redaction and truncation applied to outgoing content.

Findings never carry the full matched secret; only a masked preview is
kept so they can be logged or shown to the user safely.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence

from .providers.base import PrivacyBlockError

LOGGER = logging.getLogger("tidycode_ai.privacy")

LOCAL_PROVIDERS = ("ollama", "tinyllm")
SCAN_ACTIONS = ("block", "redact", "allow")


@dataclass(frozen=True)
class SecretDetector:
    name: str
    pattern: Pattern[str]
    description: str


@dataclass(frozen=True)
class SecretFinding:
    type: str
    match_preview: str
    index: int


@dataclass(frozen=True)
class RedactionResult:
    redacted_text: str
    findings: List[SecretFinding] = field(default_factory=list)


@dataclass(frozen=True)
class PrivacyConfig:
    """Outgoing-content policy owned by the provider manager."""

    enable_scanning: bool = True
    scan_action: str = "block"
    max_context_chars: int = 0


@dataclass
class PrivacySession:
    """Caller-owned state for the one-time privacy notice."""

    notice_shown: bool = False


SECRET_DETECTORS = (
    SecretDetector("AWS_ACCESS_KEY", re.compile(r"AKIA[0-9A-Z]{16}"), "AWS Access Key ID"),
    SecretDetector(
        "AWS_SECRET_KEY",
        re.compile(r"(?:aws_secret_access_key|aws_secret|secret_key)\s*[=:]\s*['\"]?[A-Za-z0-9/+=]{40}", re.IGNORECASE),
        "AWS Secret Access Key",
    ),
    SecretDetector("GITHUB_TOKEN", re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,255}"), "GitHub personal access token"),
    SecretDetector("OPENAI_KEY", re.compile(r"sk-[A-Za-z0-9]{20,}"), "OpenAI-style API key"),
    SecretDetector("GROQ_KEY", re.compile(r"gsk_[A-Za-z0-9]{20,}"), "Groq API key"),
    SecretDetector("BEARER_TOKEN", re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]{20,}=*", re.IGNORECASE), "Bearer authentication token"),
    SecretDetector("PRIVATE_KEY", re.compile(r"-----BEGIN (?:RSA |EC |DSA )?PRIVATE KEY-----"), "Private key header"),
    SecretDetector(
        "CONNECTION_STRING",
        re.compile(r"(?:mongodb(?:\+srv)?|postgres(?:ql)?|mysql|redis|amqp)://[^:\s]+:[^@\s]+@", re.IGNORECASE),
        "Connection string with embedded password",
    ),
    SecretDetector(
        "PASSWORD_FIELD",
        re.compile(r"(?:password|passwd|pwd|secret)\s*[=:]\s*['\"][^'\"]{4,}['\"]", re.IGNORECASE),
        "Password in configuration",
    ),
    SecretDetector("ANTHROPIC_KEY", re.compile(r"sk-ant-[A-Za-z0-9\-]{20,}"), "Anthropic API key"),
    SecretDetector(
        "GENERIC_API_KEY",
        re.compile(r"(?:api[_-]?key|apikey)\s*[=:]\s*['\"][A-Za-z0-9\-._]{20,}['\"]", re.IGNORECASE),
        "Generic API key assignment",
    ),
)


def mask_secret(value: str) -> str:
    """First 6 and last 4 characters; short matches keep only a 3 character prefix."""
    if len(value) > 12:
        return f"{value[:6]}...{value[-4:]}"
    return f"{value[:3]}..."


def scan_for_secrets(text: Optional[str]) -> List[SecretFinding]:
    if not text or not isinstance(text, str):
        return []
    findings: List[SecretFinding] = []
    seen = set()
    for detector in SECRET_DETECTORS:
        for match in detector.pattern.finditer(text):
            key = (detector.name, match.start())
            if key in seen:
                continue
            seen.add(key)
            findings.append(SecretFinding(detector.name, mask_secret(match.group(0)), match.start()))
    return findings


def redact_secrets(text: Optional[str]) -> RedactionResult:
    """Replace every detector match with ``[REDACTED-<TYPE>]``, detector by detector."""
    if not text or not isinstance(text, str):
        return RedactionResult(text or "", [])
    findings: List[SecretFinding] = []
    redacted = text
    for detector in SECRET_DETECTORS:

        def _replace(match: "re.Match[str]", name: str = detector.name) -> str:
            findings.append(SecretFinding(name, mask_secret(match.group(0)), match.start()))
            return f"[REDACTED-{name}]"

        redacted = detector.pattern.sub(_replace, redacted)
    return RedactionResult(redacted, findings)


def truncate_content(text: Optional[str], max_chars: int) -> Optional[str]:
    if not max_chars or max_chars <= 0 or not text or len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n...[content truncated to {max_chars} characters]"


def is_local_provider(provider_id: Optional[str]) -> bool:
    return provider_id in LOCAL_PROVIDERS


def should_show_privacy_notice(session: PrivacySession, provider_id: Optional[str]) -> bool:
    """True the first time a remote provider is used within ``session``."""
    if is_local_provider(provider_id) or session.notice_shown:
        return False
    session.notice_shown = True
    return True


def guard_outgoing(
    texts: Sequence[str],
    provider_id: str,
    config: PrivacyConfig,
    *,
    allow_secrets: bool = False,
) -> List[str]:
    """
    Apply truncation and the scan policy to every outgoing text.

    Returns the texts to send. Raises PrivacyBlockError when secrets are
    found for a remote provider and the policy is ``block`` and the call
    did not opt in with ``allow_secrets``. Local providers are scanned for
    logging only and are never blocked or redacted.
    """
    prepared = [truncate_content(text, config.max_context_chars) or "" for text in texts]
    if not config.enable_scanning:
        return prepared

    findings = [finding for text in prepared for finding in scan_for_secrets(text)]
    if not findings:
        return prepared

    kinds = sorted({f.type for f in findings})
    if is_local_provider(provider_id):
        LOGGER.info("Secrets detected for local provider=%s types=%s", provider_id, kinds)
        return prepared
    if allow_secrets or config.scan_action == "allow":
        LOGGER.warning("Sending content with secrets to provider=%s types=%s", provider_id, kinds)
        return prepared
    if config.scan_action == "redact":
        LOGGER.info("Redacted secrets for provider=%s types=%s", provider_id, kinds)
        return [redact_secrets(text).redacted_text for text in prepared]

    LOGGER.warning("Blocked call to provider=%s; secrets detected types=%s", provider_id, kinds)
    raise PrivacyBlockError(findings)
