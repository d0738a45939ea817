from __future__ import annotations

import logging

from roadmap.utils.helpers import parse_datetime, slugify
from roadmap.utils.logger import setup_logger
from roadmap.utils.redaction import REDACTED, sanitize_for_log, sanitize_log_extra


def test_sensitive_keys_are_redacted() -> None:
    payload = {
        "Authorization": "AIBTC bc1qalice000000",
        "refresh_key": "s3cret",
        "nested": {"token": "abc", "count": 3},
        "readme": "x" * 50,
    }

    sanitized = sanitize_for_log(payload)

    assert sanitized["Authorization"] == REDACTED
    assert sanitized["refresh_key"] == REDACTED
    assert sanitized["nested"] == {"token": REDACTED, "count": 3}
    assert sanitized["readme"] == "<redacted payload 50 chars>"


def test_inline_secrets_are_masked() -> None:
    text = "failed with Bearer abc.def and ?access_token=xyz&page=2 using ghp_abcdefgh12345678"

    masked = sanitize_for_log(text)

    assert "abc.def" not in masked
    assert "xyz" not in masked
    assert "ghp_abcdefgh12345678" not in masked
    assert "page=2" in masked


def test_sanitize_log_extra_and_formatter(caplog) -> None:
    logger = setup_logger("roadmap.test_redaction", level=logging.INFO)
    logger.propagate = True

    with caplog.at_level(logging.INFO, logger="roadmap.test_redaction"):
        logger.info("Scan finished", extra=sanitize_log_extra(token="abc", repository="acme/tool"))

    record = caplog.records[-1]
    assert record.token == REDACTED
    assert record.repository == "acme/tool"
    line = logger.handlers[0].format(record)
    assert line.endswith(f"| repository=acme/tool token={REDACTED}")


def test_helpers() -> None:
    assert slugify("Stacks Explorer | Block Browser") == "stacks-explorer-block-browser"
    parsed = parse_datetime("2026-03-01T10:00:00Z")
    assert parsed is not None and parsed.tzinfo is not None
    assert parse_datetime("not a date") is None
