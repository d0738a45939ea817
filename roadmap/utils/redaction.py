"""Credential redaction for log lines and run statistics."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "***REDACTED***"

_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "api_key",
        "apikey",
        "token",
        "access_token",
        "github_token",
        "secret",
        "password",
        "session",
        "cookie",
        "credential",
        "refresh_key",
        "key",
    }
)

# Large free-text fields are summarized instead of logged verbatim
_PAYLOAD_KEYS = frozenset({"body", "content", "readme", "raw", "payload"})

_INLINE_SECRET_PATTERNS = (
    re.compile(r"(?i)\b(bearer|token|aibtc)\s+[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)\b(access_token|token|api_key|apikey|secret|password|key)=([^&\s]+)"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{8,}\b"),
)


def _mask_text(text: str) -> str:
    masked = _INLINE_SECRET_PATTERNS[0].sub(lambda m: f"{m.group(1)} {REDACTED}", text)
    masked = _INLINE_SECRET_PATTERNS[1].sub(lambda m: f"{m.group(1)}={REDACTED}", masked)
    return _INLINE_SECRET_PATTERNS[2].sub(REDACTED, masked)


def sanitize_for_log(value: Any, key: str | None = None) -> Any:
    """Return a copy of ``value`` that is safe to write to logs or run stats."""
    normalized_key = (key or "").strip().lower()
    if normalized_key in _SENSITIVE_KEYS and value is not None:
        return REDACTED

    if isinstance(value, dict):
        return {item_key: sanitize_for_log(item, key=str(item_key)) for item_key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item) for item in value]
    if isinstance(value, str):
        if normalized_key in _PAYLOAD_KEYS:
            return f"<redacted payload {len(value)} chars>"
        return _mask_text(value)
    return value


def sanitize_log_extra(**fields: Any) -> dict[str, Any]:
    """Build a logging ``extra`` mapping with every field sanitized."""
    return {name: sanitize_for_log(value, key=name) for name, value in fields.items()}
