"""Background scan orchestrator with deadline-gated, isolated stage execution."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

from roadmap.config.settings import settings
from roadmap.crawlers.activity.client import ActivityFeedClient
from roadmap.crawlers.github.client import GitHubClient
from roadmap.crawlers.identity.client import IdentityClient
from roadmap.crawlers.scan.backfill_stage import MentionBackfillStage
from roadmap.crawlers.scan.base import Deadline
from roadmap.crawlers.scan.contributor_stage import ContributorScanStage
from roadmap.crawlers.scan.events_stage import PullRequestEventsStage
from roadmap.crawlers.scan.mention_stage import MentionScanStage
from roadmap.crawlers.scan.refresh_stage import RepositoryRefreshStage
from roadmap.crawlers.scan.website_stage import WebsiteDiscoveryStage
from roadmap.store.accounts import AccountDirectory
from roadmap.store.archive import MessageArchive
from roadmap.store.audit import AuditLog
from roadmap.store.kv import KeyValueStore, SQLAlchemyKeyValueStore
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import SaveOutcome, VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra

logger = logging.getLogger(__name__)

TASK_REPOSITORIES = "repositories"
TASK_MENTIONS = "mentions"
TASK_CONTRIBUTORS = "contributors"
TASK_EVENTS = "events"
TASK_WEBSITES = "websites"
TASK_BACKFILL = "backfill"

# Registry-mutating scans run one after another to avoid write races.
ALL_TASKS = (
    TASK_REPOSITORIES,
    TASK_MENTIONS,
    TASK_CONTRIBUTORS,
    TASK_EVENTS,
    TASK_WEBSITES,
    TASK_BACKFILL,
)

TIME_BUDGET_SKIP = {"success": True, "skipped": True, "reason": "time_budget"}


class ScanOrchestrator:
    """Runs every background reconciliation task within one wall-clock budget."""

    def __init__(
        self,
        *,
        kv: Optional[KeyValueStore] = None,
        github_client_factory: Callable[[], Any] = GitHubClient,
        activity_client_factory: Callable[[], Any] = ActivityFeedClient,
        identity_client_factory: Optional[Callable[[KeyValueStore], Any]] = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
        time_budget_seconds: Optional[float] = None,
        store: Optional[VersionedStore] = None,
    ) -> None:
        self._kv = kv or SQLAlchemyKeyValueStore()
        self._github_client_factory = github_client_factory
        self._activity_client_factory = activity_client_factory
        self._identity_client_factory = identity_client_factory or (lambda kv: IdentityClient(kv=kv))
        self._clock = clock
        self._monotonic = monotonic
        self._time_budget = time_budget_seconds if time_budget_seconds is not None else settings.SCAN_TIME_BUDGET_SECONDS
        self.store = store or VersionedStore(self._kv)
        self.audit = AuditLog(self._kv)
        self.archive = MessageArchive(self._kv)
        self.scan_state = ScanStateStore(self._kv)

    async def run(self, *, reset: bool = False, tasks: Sequence[str] | None = None) -> dict[str, Any]:
        selected = [task for task in ALL_TASKS if tasks is None or task in tasks]
        deadline = Deadline(self._time_budget, clock=self._monotonic)
        started = self._monotonic()
        run_stats: dict[str, Any] = {
            "started_at": self._clock().isoformat(),
            "reset": reset,
            "tasks_requested": selected,
            "tasks": {},
            "errors": [],
        }
        logger.info("Scan run started", extra=sanitize_log_extra(tasks_requested=selected, reset=reset))

        for task_name in selected:
            if deadline.expired:
                run_stats["tasks"][task_name] = dict(TIME_BUDGET_SKIP)
                logger.info("Scan task skipped, time budget exhausted", extra=sanitize_log_extra(task=task_name))
                continue

            runner = self._resolve_task_runner(task_name)
            try:
                result = await runner(deadline, reset=reset)
                run_stats["tasks"][task_name] = result
                if not result.get("success", False):
                    summarized_error = sanitize_for_log(result.get("error", "task failed"))
                    run_stats["errors"].append(f"{task_name}: {summarized_error}")
                    logger.warning(
                        "Scan task reported failure",
                        extra=sanitize_log_extra(task=task_name, error=summarized_error, stats=result.get("stats")),
                    )
            except Exception as exc:
                sanitized_error = sanitize_for_log(str(exc), key="error")
                logger.exception(
                    "Scan task raised exception",
                    extra=sanitize_log_extra(task=task_name, error=sanitized_error),
                )
                run_stats["tasks"][task_name] = {"success": False, "error": sanitized_error, "stats": {}}
                run_stats["errors"].append(f"{task_name}: {sanitized_error}")

        run_stats["completed_at"] = self._clock().isoformat()
        run_stats["elapsed_ms"] = int((self._monotonic() - started) * 1000)
        run_stats["success"] = all(task.get("success", False) for task in run_stats["tasks"].values())
        logger.info(
            "Scan run completed",
            extra=sanitize_log_extra(
                success=run_stats["success"],
                elapsed_ms=run_stats["elapsed_ms"],
                errors=run_stats["errors"],
            ),
        )
        return run_stats

    def _resolve_task_runner(self, task_name: str) -> Callable[..., Awaitable[dict[str, Any]]]:
        mapping = {
            TASK_REPOSITORIES: self.run_repositories_task,
            TASK_MENTIONS: self.run_mentions_task,
            TASK_CONTRIBUTORS: self.run_contributors_task,
            TASK_EVENTS: self.run_events_task,
            TASK_WEBSITES: self.run_websites_task,
            TASK_BACKFILL: self.run_backfill_task,
        }
        return mapping[task_name]

    async def run_repositories_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        del reset
        async with self._github_client_factory() as github:
            stage = RepositoryRefreshStage(store=self.store, audit=self.audit, github_client=github, clock=self._clock)
            return _stage_result(await stage.run(deadline))

    async def run_mentions_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        async with self._activity_client_factory() as activity:
            stage = MentionScanStage(
                store=self.store,
                audit=self.audit,
                archive=self.archive,
                scan_state=self.scan_state,
                activity_client=activity,
                clock=self._clock,
            )
            return _stage_result(await stage.run(deadline, reset=reset))

    async def run_contributors_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        del reset
        async with self._github_client_factory() as github, self._identity_client_factory(self._kv) as identity:
            stage = ContributorScanStage(
                store=self.store,
                scan_state=self.scan_state,
                github_client=github,
                accounts=AccountDirectory(self._kv, identity),
                clock=self._clock,
            )
            return _stage_result(await stage.run(deadline))

    async def run_events_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        del reset
        async with self._github_client_factory() as github, self._identity_client_factory(self._kv) as identity:
            stage = PullRequestEventsStage(
                store=self.store,
                audit=self.audit,
                scan_state=self.scan_state,
                github_client=github,
                accounts=AccountDirectory(self._kv, identity),
                clock=self._clock,
            )
            return _stage_result(await stage.run(deadline))

    async def run_websites_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        del reset
        async with self._github_client_factory() as github:
            stage = WebsiteDiscoveryStage(
                store=self.store,
                scan_state=self.scan_state,
                archive=self.archive,
                github_client=github,
                clock=self._clock,
            )
            return _stage_result(await stage.run(deadline))

    async def run_backfill_task(self, deadline: Deadline, *, reset: bool = False) -> dict[str, Any]:
        del reset
        async with self._activity_client_factory() as activity:
            stage = MentionBackfillStage(store=self.store, audit=self.audit, activity_client=activity)
            return _stage_result(await stage.run(deadline))


def _stage_result(stats: Any) -> dict[str, Any]:
    payload = asdict(stats)
    if payload.get("save_outcome") == SaveOutcome.DROPPED.value:
        return {"success": False, "error": "registry changes dropped after write conflicts", "stats": payload}
    return {"success": True, "stats": payload}
