"""Website discovery stage with claim revalidation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.github.snapshots import parse_repository_url
from roadmap.crawlers.scan.base import Deadline, cooldown_elapsed, scannable_repository
from roadmap.models.activity import ActivityEntry
from roadmap.models.project import ProjectRecord, Registry, WebsiteSource
from roadmap.models.scan_state import ScanKind, ScanState
from roadmap.services.website_discovery import (
    WebsiteCandidate,
    discover_from_repository,
    discover_website,
    find_invalid_claims,
)
from roadmap.store.archive import MessageArchive
from roadmap.store.delta import RecordOperation, RegistryDelta
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebsiteStageStats:
    synced: int = 0
    cleared: int = 0
    scanned_repos: int = 0
    discovered: int = 0
    errors: list[str] = field(default_factory=list)
    deadline_reached: bool = False
    save_outcome: Optional[str] = None


class WebsiteDiscoveryStage:
    """Keep at most one website claim per URL and discover sites for unclaimed records."""

    def __init__(
        self,
        *,
        store: VersionedStore,
        scan_state: ScanStateStore,
        archive: MessageArchive,
        github_client: Any,
        clock: Callable[[], datetime] = utc_now,
        cooldown_minutes: Optional[int] = None,
        backoff_minutes: Optional[int] = None,
        failure_threshold: Optional[int] = None,
        self_hosts: Optional[Iterable[str]] = None,
    ) -> None:
        self._store = store
        self._scan_state = scan_state
        self._archive = archive
        self._github = github_client
        self._clock = clock
        self._cooldown_minutes = cooldown_minutes or settings.WEBSITE_SCAN_COOLDOWN_MINUTES
        self._backoff_minutes = backoff_minutes or settings.WEBSITE_SCAN_BACKOFF_MINUTES
        self._failure_threshold = failure_threshold or settings.SCAN_FAILURE_BACKOFF_THRESHOLD
        self._self_hosts = tuple(self_hosts) if self_hosts is not None else settings.SELF_HOSTS

    async def run(self, deadline: Deadline) -> WebsiteStageStats:
        stats = WebsiteStageStats()
        state = self._scan_state.load_repo_state()
        registry = self._store.load()
        delta = RegistryDelta()
        delta.add_check(_clear_invalid_claims)
        now = self._clock()

        for record in registry.items:
            if delta.apply(record, _sync_homepage_claim(now)):
                stats.synced += 1

        stats.cleared = self._revalidate(registry, delta, state)

        claimed = {record.website.url for record in registry.items if record.website is not None}
        messages: Optional[list[ActivityEntry]] = None
        scanned: list[str] = []

        for record in registry.items:
            if record.website is not None:
                continue
            ref = scannable_repository(record)
            if ref is None:
                continue
            mark = state.repo(ref.path).mark(ScanKind.WEBSITE)
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

            candidate = discover_from_repository(record, claimed_urls=claimed)
            if candidate is None:
                readme = await self._github.get_readme(ref.owner, ref.repo)
                if readme.is_failed:
                    stats.errors.append(f"{ref.path}: README fetch failed ({sanitize_for_log(readme.error or 'unknown')})")
                    state.record_failure(ref.path, ScanKind.WEBSITE, now)
                    continue
                if messages is None:
                    messages = self._archive.messages()
                candidate = discover_website(
                    record,
                    claimed_urls=claimed,
                    readme=readme.data if readme.is_ok else None,
                    messages=messages,
                    self_hosts=self._self_hosts,
                )

            if candidate is not None and delta.apply(record, _claim_website(candidate, now)):
                claimed.add(candidate.url)
                stats.discovered += 1
                logger.info(
                    "Website discovered",
                    extra=sanitize_log_extra(record_id=record.id, url=candidate.url, source=candidate.source.value),
                )
            scanned.append(ref.path)
            stats.scanned_repos += 1

        save = await self._store.save_with_retry(registry, delta)
        stats.save_outcome = save.outcome.value
        if save.dropped:
            logger.warning(
                "Website changes dropped; repositories will be rescanned",
                extra=sanitize_log_extra(repositories=scanned),
            )
        else:
            for repo_path in scanned:
                state.record_success(repo_path, ScanKind.WEBSITE, now)
        self._scan_state.save_repo_state(state)
        return stats

    @staticmethod
    def _revalidate(registry: Registry, delta: RegistryDelta, state: ScanState) -> int:
        cleared = 0
        for claim in find_invalid_claims(registry.items):
            record = registry.find(claim.record_id)
            if record is None or not delta.apply(record, _clear_claim(claim.url)):
                continue
            cleared += 1
            ref = parse_repository_url(record.repository_url)
            if ref is not None:
                state.reset(ref.path, ScanKind.WEBSITE)
            logger.info(
                "Website claim cleared",
                extra=sanitize_log_extra(record_id=record.id, url=claim.url, reason=claim.reason),
            )
        return cleared


def _sync_homepage_claim(now: datetime) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        website = record.website
        homepage = record.snapshot.homepage if record.snapshot else None
        if website is None or website.source != WebsiteSource.HOMEPAGE or not homepage or website.url == homepage:
            return False
        website.url = homepage
        website.discovered_at = now
        record.touch(now)
        return True

    return operation


def _clear_claim(url: str) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        if record.website is None or record.website.url != url:
            return False
        record.website = None
        return True

    return operation


def _claim_website(candidate: WebsiteCandidate, now: datetime) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        if record.website is not None:
            return False
        record.website = candidate.to_website(now)
        record.touch(now)
        return True

    return operation


def _clear_invalid_claims(registry: Registry) -> bool:
    """Re-arbitrate claims after a replay onto data written by someone else."""
    changed = False
    for claim in find_invalid_claims(registry.items):
        record = registry.find(claim.record_id)
        if record is not None and _clear_claim(claim.url)(record):
            changed = True
    return changed
