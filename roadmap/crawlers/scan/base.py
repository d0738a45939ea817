"""Shared primitives for background scan stages."""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from roadmap.crawlers.github.snapshots import RepositoryRef, parse_repository_url
from roadmap.models.project import ProjectRecord, RepositoryKind
from roadmap.models.scan_state import ScanMark


class Deadline:
    """Wall-clock budget for one scan invocation."""

    def __init__(self, budget_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + budget_seconds

    def remaining(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at


def cooldown_elapsed(
    mark: ScanMark,
    now: datetime,
    *,
    cooldown_minutes: int,
    backoff_minutes: int,
    failure_threshold: int,
) -> bool:
    """True when the repository may be scanned again."""
    if mark.last_scan_at is None:
        return True
    minutes = backoff_minutes if mark.failures >= failure_threshold else cooldown_minutes
    return now - mark.last_scan_at >= timedelta(minutes=minutes)


def scannable_repository(record: ProjectRecord) -> Optional[RepositoryRef]:
    """Repository reference for repo-kind, non-archived records."""
    ref = parse_repository_url(record.repository_url)
    if ref is None or ref.kind != RepositoryKind.REPO or record.is_archived:
        return None
    return ref


def is_bot_login(login: Optional[str], account_type: Optional[str] = None) -> bool:
    return account_type == "Bot" or bool(login and login.endswith("[bot]"))
