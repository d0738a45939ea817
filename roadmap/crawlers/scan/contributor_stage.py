"""Repository contributor scan stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.scan.base import Deadline, cooldown_elapsed, is_bot_login, scannable_repository
from roadmap.models.project import Account, ProjectRecord
from roadmap.models.scan_state import ScanKind
from roadmap.store.accounts import AccountDirectory
from roadmap.store.delta import RecordOperation, RegistryDelta
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ContributorStageStats:
    scanned_repos: int = 0
    new_contributors: int = 0
    unmapped_logins: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    deadline_reached: bool = False
    save_outcome: Optional[str] = None


class ContributorScanStage:
    """Add registered accounts that contribute to a record's repository."""

    def __init__(
        self,
        *,
        store: VersionedStore,
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
        self._scan_state = scan_state
        self._github = github_client
        self._accounts = accounts
        self._clock = clock
        self._cooldown_minutes = cooldown_minutes or settings.REPO_SCAN_COOLDOWN_MINUTES
        self._backoff_minutes = backoff_minutes or settings.REPO_SCAN_BACKOFF_MINUTES
        self._failure_threshold = failure_threshold or settings.SCAN_FAILURE_BACKOFF_THRESHOLD
        self._per_page = per_page or settings.CONTRIBUTORS_PER_PAGE

    async def run(self, deadline: Deadline) -> ContributorStageStats:
        stats = ContributorStageStats()
        state = self._scan_state.load_repo_state()
        registry = self._store.load()
        delta = RegistryDelta()
        now = self._clock()
        scanned: list[str] = []

        for record in registry.items:
            ref = scannable_repository(record)
            if ref is None:
                continue
            mark = state.repo(ref.path).mark(ScanKind.CONTRIBUTORS)
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

            result = await self._github.list_contributors(ref.owner, ref.repo, per_page=self._per_page)
            if result.is_failed or result.is_not_found or (result.is_ok and not isinstance(result.data, list)):
                error = result.error or "non-list response"
                stats.errors.append(f"{ref.path}: {sanitize_for_log(error)}")
                state.record_failure(ref.path, ScanKind.CONTRIBUTORS, now)
                continue

            for contributor in result.data or []:
                login = contributor.get("login") if isinstance(contributor, dict) else None
                if not login or is_bot_login(login, contributor.get("type")):
                    continue
                account = await self._accounts.resolve(login)
                if account is None:
                    if login not in stats.unmapped_logins:
                        stats.unmapped_logins.append(login)
                    continue
                if delta.apply(record, _add_contributor(account)):
                    stats.new_contributors += 1

            scanned.append(ref.path)
            stats.scanned_repos += 1

        save = await self._store.save_with_retry(registry, delta)
        stats.save_outcome = save.outcome.value
        if not save.dropped:
            for repo_path in scanned:
                state.record_success(repo_path, ScanKind.CONTRIBUTORS, now)
        self._scan_state.save_repo_state(state)
        if stats.errors:
            logger.info("Contributor scan finished with errors", extra=sanitize_log_extra(errors=stats.errors))
        return stats


def _add_contributor(account: Account) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        return record.add_contributor(account)

    return operation
