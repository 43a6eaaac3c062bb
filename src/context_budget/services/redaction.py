"""Redaction — scrub credentials and contact details before text leaves the process.

Only the AI-assisted summary sends document text to an external service, so
only that path is redacted; local compression works on the original text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ── Compiled patterns ───────────────────────────────────────────────────────

# Order matters: assignments and URLs swallow whole values before the
# narrower token patterns run.
_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (
        "KEY_ASSIGNMENT",
        re.compile(
            r"(?:api[_\-]?key|secret[_\-]?key|access[_\-]?token|client[_\-]?secret|password)"
            r"""\s*[:=]\s*['"]?[^\s'"]{8,}['"]?""",
            re.IGNORECASE,
        ),
    ),
    ("PRIVATE_KEY", re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----")),
    (
        "CONN_STRING",
        re.compile(r"(?:postgres(?:ql)?|mysql|mongodb|redis)(?:\+\w+)?://[^\s]{10,}", re.IGNORECASE),
    ),
    ("AWS_KEY", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("API_TOKEN", re.compile(r"\b(?:sk|pk|rk)-[A-Za-z0-9_\-]{20,}")),
    ("GITHUB_TOKEN", re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,}")),
    ("EMAIL", re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")),
    ("PHONE", re.compile(r"(?<!\w)(?:\+\d{1,3}[ .\-]?)?\(?\d{3}\)?[ .\-]\d{3}[ .\-]\d{4}(?!\w)")),
]


@dataclass(frozen=True, slots=True)
class RedactionResult:
    clean_text: str
    redaction_count: int
    labels: tuple[str, ...] = ()


def redact(text: str) -> RedactionResult:
    """Replace every match with ``[REDACTED:<label>]``."""
    count = 0
    labels: list[str] = []
    result = text

    for label, pattern in _PATTERNS:
        result, num = pattern.subn(f"[REDACTED:{label}]", result)
        if num:
            count += num
            labels.append(label)

    return RedactionResult(clean_text=result, redaction_count=count, labels=tuple(labels))
