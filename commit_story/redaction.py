"""Minimal sensitive-data filter applied to commit messages, diffs and chat text."""

from __future__ import annotations

import re
from dataclasses import dataclass

# (pattern, replacement, counter name); applied in order
_RULES: list[tuple[re.Pattern[str], str, str]] = [
    (
        re.compile(r"\b(?:sk-|pk-|rk-|AIza|AKIA|gho_|ghp_|ghs_|ghu_|glpat-)[a-zA-Z0-9_-]{10,}"),
        "[REDACTED_KEY]",
        "keys",
    ),
    (
        re.compile(r"\b(?:api_?key|token|secret|password|credential)[\s:=]+[a-f0-9]{16,64}\b", re.IGNORECASE),
        "[REDACTED_KEY]",
        "keys",
    ),
    (
        re.compile(r"\b(?:api_?key|token|secret|password|credential)[\s:=]+[a-zA-Z0-9_-]{20,}\b", re.IGNORECASE),
        "[REDACTED_KEY]",
        "keys",
    ),
    (
        re.compile(r"\beyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
        "[REDACTED_JWT]",
        "jwts",
    ),
    (
        re.compile(r"Bearer\s+[a-zA-Z0-9\-._~+/]+", re.IGNORECASE),
        "[REDACTED_TOKEN]",
        "tokens",
    ),
    (
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        "[REDACTED_EMAIL]",
        "emails",
    ),
]


@dataclass
class RedactionCounts:
    keys: int = 0
    jwts: int = 0
    tokens: int = 0
    emails: int = 0

    @property
    def total(self) -> int:
        return self.keys + self.jwts + self.tokens + self.emails


def redact_with_counts(text: str) -> tuple[str, RedactionCounts]:
    """
    Redact API keys, JWTs, bearer tokens and e-mail addresses.

    Only counts are reported, never the matched values.
    """
    counts = RedactionCounts()
    if not text:
        return text, counts

    result = text
    for pattern, replacement, counter in _RULES:
        result, n = pattern.subn(replacement, result)
        if n:
            setattr(counts, counter, getattr(counts, counter) + n)
    return result, counts


def redact_sensitive_data(text: str) -> str:
    """Convenience wrapper returning only the redacted text."""
    return redact_with_counts(text)[0]


__all__ = ["RedactionCounts", "redact_sensitive_data", "redact_with_counts"]
