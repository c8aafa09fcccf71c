"""Secret detection over HTML and JavaScript text."""

import logging
import re
from typing import Iterable

from ..models import Finding, Severity
from .filters import reject_reason
from .patterns import FIREBASE_CONFIG_PATTERN, SECRET_RULES

logger = logging.getLogger(__name__)

MASK = "●●●●●●●●"
CONTEXT_CHARS = 30
PREVIEW_LENGTH = 30
MAX_CONFIG_BLOCK = 1000

_QUOTED_VALUE = re.compile(r"([\"'])([a-zA-Z0-9_\-\.]{8})[a-zA-Z0-9_\-\.]+\1")
_LONG_TOKEN = re.compile(r"[a-zA-Z0-9_\-+/]{16,}")
_PEM_BODY = re.compile(r"(-----BEGIN[A-Z ]*-----).*")
_QUOTES = "'\"` \t\r\n"


def _kept_prefix(value: str) -> str:
    return value[: min(8, len(value) // 2)]


def redact(value: str) -> str:
    """Keep at most the first 8 characters (never more than half) and mask the rest."""
    return f"{_kept_prefix(value)}{MASK}"


def preview_of(value: str) -> str:
    """Short display form of a secret: its first few characters and an ellipsis."""
    return f"{_kept_prefix(value)}..."


def _truncate(text: str, limit: int = PREVIEW_LENGTH) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def mask_context(context: str, value: str = "") -> str:
    """Redact ``value`` and anything else in ``context`` that could be a credential.

    Neighbouring quoted values and long token-like runs are masked too, as is
    everything after a PEM header on the same line.
    """
    context = _PEM_BODY.sub(rf"\1{MASK}", context)
    if value:
        context = context.replace(value, redact(value))
    context = _QUOTED_VALUE.sub(rf"\1\2{MASK}\1", context)
    return _LONG_TOKEN.sub(lambda m: redact(m.group(0)), context)


def _secret_value(match: re.Match) -> str:
    for group in match.groups():
        if group:
            return group
    return match.group(0).strip(_QUOTES)


def _line_bounds(text: str, start: int, end: int) -> tuple[int, int]:
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    return line_start, len(text) if line_end == -1 else line_end


def _object_literal(text: str, start: int) -> str:
    """Return the brace-balanced object starting at the first ``{`` after ``start``."""
    open_at = text.find("{", start)
    if open_at == -1:
        return text[start : start + MAX_CONFIG_BLOCK]
    depth = 0
    limit = min(len(text), open_at + MAX_CONFIG_BLOCK)
    for index in range(open_at, limit):
        if text[index] == "{":
            depth += 1
        elif text[index] == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return text[start:limit]


def _firebase_config_findings(text: str) -> list[Finding]:
    findings = []
    for match in FIREBASE_CONFIG_PATTERN.finditer(text):
        variable, api_key = match.group(1), match.group(2)
        findings.append(
            Finding(
                type="Firebase Configuration",
                preview=f'{variable} = {{ apiKey: "{preview_of(api_key)}" }}',
                details=mask_context(_object_literal(text, match.start()), api_key),
                severity=Severity.medium,
            )
        )
    return findings


def detect(text: str) -> list[Finding]:
    """Scan one document for leaked secrets.

    Every rule is applied in order; matches on lines the filter stage
    rejects are dropped. Results are deduplicated by preview.
    """
    if not text:
        return []

    findings = _firebase_config_findings(text)

    for rule in SECRET_RULES:
        for match in rule.regex.finditer(text):
            value = _secret_value(match)
            line_start, line_end = _line_bounds(text, match.start(), match.end())

            reason = reject_reason(rule, text[line_start:line_end], value)
            if reason:
                logger.debug(f"Dropped {rule.name} match {preview_of(value)}: {reason}")
                continue

            matched = match.group(0).strip()
            context = text[max(line_start, match.start() - CONTEXT_CHARS) : min(line_end, match.end() + CONTEXT_CHARS)]
            findings.append(
                Finding(
                    type=rule.name,
                    preview=_truncate(matched.replace(value, preview_of(value))),
                    details=mask_context(context.strip(), value),
                    severity=Severity(rule.severity),
                )
            )

    return dedupe(findings)


def dedupe(findings: Iterable[Finding]) -> list[Finding]:
    """Drop findings whose preview was already seen, keeping the first."""
    seen: set[str] = set()
    unique = []
    for finding in findings:
        if finding.preview in seen:
            continue
        seen.add(finding.preview)
        unique.append(finding)
    return unique


def detect_many(texts: Iterable[str]) -> list[Finding]:
    """Scan several documents and merge their findings."""
    findings: list[Finding] = []
    for text in texts:
        findings.extend(detect(text))
    return dedupe(findings)
