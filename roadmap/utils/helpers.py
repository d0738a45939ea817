"""Utility helper functions"""

from datetime import UTC, datetime
from typing import Any, Optional
from urllib.parse import urlsplit
import re
import uuid


def utc_now() -> datetime:
    """Current timezone-aware UTC time"""
    return datetime.now(UTC)


def parse_datetime(raw: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime

    Args:
        raw: String or datetime

    Returns:
        Aware datetime, or None if the value is missing or malformed
    """
    if isinstance(raw, datetime):
        return raw if raw.tzinfo is not None else raw.replace(tzinfo=UTC)
    if not isinstance(raw, str) or not raw.strip():
        return None

    text = raw.strip().replace("Z", "+00:00")
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def generate_id(prefix: str) -> str:
    """Short opaque identifier such as ``r_1a2b3c4d``"""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def slugify(text: str) -> str:
    """Lower-case alphanumeric-and-hyphen form of ``text``"""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def hostname_of(url: str) -> Optional[str]:
    """Lower-cased hostname of a URL, or None when it cannot be parsed"""
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def is_valid_url(url: str) -> bool:
    """
    Check if URL is valid

    Args:
        url: URL to check

    Returns:
        True if valid
    """
    pattern = re.compile(
        r'^https?://'  # http:// or https://
        r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|'  # domain...
        r'localhost|'  # localhost...
        r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'  # ...or ip
        r'(?::\d+)?'  # optional port
        r'(?:/?|[/?]\S+)$', re.IGNORECASE
    )

    return bool(pattern.match(url))
