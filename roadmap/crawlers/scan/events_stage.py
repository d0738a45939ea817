"""Merged pull request scan stage: merged PRs become deliverables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.scan.base import Deadline, cooldown_elapsed, is_bot_login, scannable_repository
from roadmap.models.activity import AuditEvent, EventType
from roadmap.models.project import Account, Deliverable, ProjectRecord
from roadmap.models.scan_state import ScanKind
from roadmap.store.accounts import AccountDirectory
from roadmap.store.audit import AuditLog
from roadmap.store.delta import RecordOperation, RegistryDelta
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import generate_id, parse_datetime, utc_now
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EventsStageStats:
    scanned_repos: int = 0
    new_deliverables: int = 0
    new_contributors: int = 0
    errors: list[str] = field(default_factory=list)
    deadline_reached: bool = False
    save_outcome: Optional[str] = None


@dataclass(slots=True)
class _PlannedDeliverable:
    record_id: str
    deliverable: Deliverable


class PullRequestEventsStage:
    """Turn recently merged, human-authored pull requests into deliverables."""

    def __init__(
        self,
        *,
        store: VersionedStore,
        audit: AuditLog,
        scan_state: ScanStateStore,
        github_client: Any,
        accounts: AccountDirectory,
        clock: Callable[[], datetime] = utc_now,
        cooldown_minutes: Optional[int] = None,
        backoff_minutes: Optional[int] = None,
        failure_threshold: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._scan_state = scan_state
        self._github = github_client
        self._accounts = accounts
        self._clock = clock
        self._cooldown_minutes = cooldown_minutes or settings.REPO_SCAN_COOLDOWN_MINUTES
        self._backoff_minutes = backoff_minutes or settings.REPO_SCAN_BACKOFF_MINUTES
        self._failure_threshold = failure_threshold or settings.SCAN_FAILURE_BACKOFF_THRESHOLD
        self._per_page = per_page or settings.CLOSED_PULLS_PER_PAGE

    async def run(self, deadline: Deadline) -> EventsStageStats:
        stats = EventsStageStats()
        state = self._scan_state.load_repo_state()
        registry = self._store.load()
        delta = RegistryDelta()
        planned: list[_PlannedDeliverable] = []
        scanned: list[str] = []
        now = self._clock()

        for record in registry.items:
            ref = scannable_repository(record)
            if ref is None:
                continue
            mark = state.repo(ref.path).mark(ScanKind.EVENTS)
            if not cooldown_elapsed(
                mark,
                now,
                cooldown_minutes=self._cooldown_minutes,
                backoff_minutes=self._backoff_minutes,
                failure_threshold=self._failure_threshold,
            ):
                continue
            if deadline.expired:
                stats.deadline_reached = True
                break

            last_scan_at = mark.last_scan_at
            result = await self._github.list_closed_pulls(ref.owner, ref.repo, per_page=self._per_page)
            if result.is_failed or result.is_not_found or (result.is_ok and not isinstance(result.data, list)):
                stats.errors.append(f"{ref.path}: {sanitize_for_log(result.error or 'non-list response')}")
                state.record_failure(ref.path, ScanKind.EVENTS, now)
                continue

            for pull in result.data or []:
                if not isinstance(pull, dict):
                    continue
                merged_at = parse_datetime(pull.get("merged_at"))
                if merged_at is None:
                    continue
                user = pull.get("user") if isinstance(pull.get("user"), dict) else {}
                login = user.get("login")
                if is_bot_login(login, user.get("type")):
                    continue
                if last_scan_at is not None and merged_at <= last_scan_at:
                    continue
                url = pull.get("html_url")
                if not url or record.has_deliverable_url(url):
                    continue

                account = await self._accounts.resolve(login) if login else None
                deliverable = Deliverable(
                    id=generate_id("d"),
                    url=url,
                    title=str(pull.get("title") or url),
                    added_by=account,
                    added_by_name=account.display_name if account else (login or "unknown"),
                    added_at=now,
                )
                had_contributor = account is not None and record.has_contributor(account.account_id)
                if delta.apply(record, _add_deliverable(deliverable, account)):
                    planned.append(_PlannedDeliverable(record.id, deliverable))
                    stats.new_deliverables += 1
                    if account is not None and not had_contributor:
                        stats.new_contributors += 1

            scanned.append(ref.path)
            stats.scanned_repos += 1

        save = await self._store.save_with_retry(registry, delta)
        stats.save_outcome = save.outcome.value
        if save.dropped:
            logger.warning(
                "Pull request scan changes dropped; repositories will be rescanned",
                extra=sanitize_log_extra(repositories=scanned),
            )
        else:
            for repo_path in scanned:
                state.record_success(repo_path, ScanKind.EVENTS, now)
        self._scan_state.save_repo_state(state)
        if save.persisted and save.registry is not None:
            events = self._events(planned, save.registry, now)
            if events:
                self._audit.record_many(events)
        return stats

    @staticmethod
    def _events(planned: list[_PlannedDeliverable], registry: Any, now: datetime) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        for item in planned:
            record = registry.find(item.record_id)
            if record is None or not any(d.id == item.deliverable.id for d in record.deliverables):
                continue
            events.append(
                AuditEvent(
                    type=EventType.DELIVERABLE_ADDED,
                    actor=item.deliverable.added_by,
                    record_id=record.id,
                    record_title=record.title,
                    data={"title": item.deliverable.title, "url": item.deliverable.url, "source": "github_pr"},
                    timestamp=now,
                )
            )
        return events


def _add_deliverable(deliverable: Deliverable, account: Optional[Account]) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        if record.has_deliverable_url(deliverable.url):
            return False
        record.deliverables.append(deliverable.model_copy(deep=True))
        record.add_contributor(account)
        record.touch(deliverable.added_at)
        return True

    return operation
