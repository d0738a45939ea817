"""Repository snapshot refresh stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.github.snapshots import fetch_snapshot, parse_repository_url
from roadmap.crawlers.scan.base import Deadline
from roadmap.models.project import ProjectRecord, RepositorySnapshot
from roadmap.services.status import StatusTransition, reconcile_status, status_sync_event, transition_for
from roadmap.store.audit import AuditLog
from roadmap.store.delta import RecordOperation, RegistryDelta
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshStageStats:
    checked: int = 0
    refreshed: int = 0
    not_found: int = 0
    archived: int = 0
    failed: int = 0
    status_changes: int = 0
    deadline_reached: bool = False
    save_outcome: Optional[str] = None


class RepositoryRefreshStage:
    """Re-fetch stale snapshots and re-derive status without regressing terminal states."""

    def __init__(
        self,
        *,
        store: VersionedStore,
        audit: AuditLog,
        github_client: Any,
        clock: Callable[[], datetime] = utc_now,
        stale_after_minutes: Optional[int] = None,
        not_found_threshold: Optional[int] = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._github = github_client
        self._clock = clock
        self._stale_after = timedelta(minutes=stale_after_minutes or settings.SNAPSHOT_STALE_AFTER_MINUTES)
        self._not_found_threshold = not_found_threshold or settings.NOT_FOUND_ARCHIVE_THRESHOLD

    async def run(self, deadline: Deadline) -> RefreshStageStats:
        stats = RefreshStageStats()
        registry = self._store.load()
        delta = RegistryDelta()
        transitions: dict[str, StatusTransition] = {}
        now = self._clock()

        for record in registry.items:
            if not self._is_stale(record, now):
                continue
            ref = parse_repository_url(record.repository_url)
            if ref is None:
                continue
            if deadline.expired:
                stats.deadline_reached = True
                break

            stats.checked += 1
            result = await fetch_snapshot(self._github, ref, fetched_at=now)
            if result.is_ok and result.data is not None:
                delta.apply(record, self._replace_snapshot(record.repository_url, result.data, transitions))
                stats.refreshed += 1
            elif result.is_not_found:
                previous = record.snapshot.not_found_count if record.snapshot else 0
                was_archived = record.is_archived
                delta.apply(record, self._count_not_found(record.repository_url, previous + 1, now, transitions))
                stats.not_found += 1
                if previous + 1 >= self._not_found_threshold and not was_archived:
                    stats.archived += 1
                    logger.warning(
                        "Repository not found repeatedly, marking archived",
                        extra=sanitize_log_extra(record_id=record.id, repository=ref.path, not_found_count=previous + 1),
                    )
            else:
                stats.failed += 1

        save = await self._store.save_with_retry(registry, delta)
        stats.save_outcome = save.outcome.value
        if save.persisted and save.registry is not None:
            events = [
                status_sync_event(transition)
                for record_id, transition in transitions.items()
                if save.registry.find(record_id) is not None
            ]
            if events:
                self._audit.record_many(events)
            stats.status_changes = len(events)
        return stats

    def _is_stale(self, record: ProjectRecord, now: datetime) -> bool:
        if not record.repository_url:
            return False
        fetched_at = record.snapshot.fetched_at if record.snapshot else None
        return fetched_at is None or now - fetched_at >= self._stale_after

    @staticmethod
    def _replace_snapshot(
        repository_url: str,
        snapshot: RepositorySnapshot,
        transitions: dict[str, StatusTransition],
    ) -> RecordOperation:
        def operation(record: ProjectRecord) -> bool:
            if record.repository_url != repository_url:
                transitions.pop(record.id, None)
                return False
            old_status = record.status
            record.snapshot = snapshot.model_copy(deep=True)
            record.status = reconcile_status(old_status, record.snapshot)
            record.touch(snapshot.fetched_at)
            _track(transitions, record, old_status)
            return True

        return operation

    def _count_not_found(
        self,
        repository_url: str,
        count: int,
        now: datetime,
        transitions: dict[str, StatusTransition],
    ) -> RecordOperation:
        threshold = self._not_found_threshold

        def operation(record: ProjectRecord) -> bool:
            if record.repository_url != repository_url:
                transitions.pop(record.id, None)
                return False
            old_status = record.status
            snapshot = record.snapshot or RepositorySnapshot()
            snapshot.not_found_count = max(snapshot.not_found_count, count)
            snapshot.fetched_at = now
            if snapshot.not_found_count >= threshold:
                snapshot.archived = True
            record.snapshot = snapshot
            record.status = reconcile_status(old_status, snapshot)
            record.touch(now)
            _track(transitions, record, old_status)
            return True

        return operation


def _track(transitions: dict[str, StatusTransition], record: ProjectRecord, old_status: Any) -> None:
    transition = transition_for(record, old_status)
    if transition is None:
        transitions.pop(record.id, None)
    else:
        transitions[record.id] = transition
