"""Interactive registry operations: load, validate, mutate, conditional save."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from roadmap.crawlers.github.snapshots import fetch_snapshot
from roadmap.errors import RecordNotFound, ValidationFailed
from roadmap.models.activity import AuditEvent, EventType
from roadmap.models.project import Account, ProjectRecord, ProjectStatus, Registry, RepositorySnapshot
from roadmap.services import project_actions as actions
from roadmap.services.status import reconcile_status
from roadmap.store.audit import AuditLog
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


class ProjectService:
    """Record operations performed on behalf of an authenticated account.

    Each call loads the registry, applies one action to an in-memory copy and
    writes it back with a single conditional save. A concurrent writer makes
    the save raise ``ConcurrencyConflict``, which is surfaced to the caller
    unchanged so the request can be retried.
    """

    def __init__(
        self,
        *,
        store: VersionedStore,
        audit: AuditLog,
        github_client: Any = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._github = github_client
        self._clock = clock

    def list_projects(self) -> list[ProjectRecord]:
        return self._store.load().items

    def get_project(self, record_id: str) -> ProjectRecord:
        record = self._store.load().find(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    async def create_project(
        self,
        actor: Account,
        *,
        title: str,
        repository_url: str,
        description: str = "",
        status: ProjectStatus | str | None = None,
    ) -> ProjectRecord:
        actions.validate_title(title)
        ref = actions.validate_repository_url(repository_url, require_repo=True)
        snapshot = await self._fetch_snapshot(repository_url)

        registry = self._store.load()
        record = actions.new_record(
            actor,
            title=title,
            repository_url=repository_url,
            snapshot=snapshot,
            description=description,
            status=status,
            now=self._clock(),
        )
        registry.items.append(record)
        self._store.save(registry)
        logger.info("Project created", extra=sanitize_log_extra(record_id=record.id, repository=ref.path))
        self._emit(EventType.CREATED, actor, record, {"status": record.status.value})
        return record

    async def update_project(
        self,
        actor: Account,
        record_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: ProjectStatus | str | None = None,
        repository_url: Optional[str] = None,
        search_terms: Optional[Iterable[str]] = None,
    ) -> ProjectRecord:
        cleaned_url = repository_url.strip() if repository_url is not None else None
        new_ref = actions.validate_repository_url(cleaned_url) if cleaned_url is not None else None

        registry = self._store.load()
        record = self._require(registry, record_id)
        now = self._clock()

        if new_ref is not None and cleaned_url != (record.repository_url or ""):
            actions.check_same_repository_kind(record, new_ref)
            new_snapshot = await self._fetch_snapshot(cleaned_url)
            record.repository_url = cleaned_url
            record.snapshot = new_snapshot
            record.status = reconcile_status(record.status, new_snapshot)

        change = actions.apply_field_updates(
            record,
            actor,
            title=title,
            description=description,
            status=status,
            search_terms=search_terms,
            now=now,
        )
        self._store.save(registry)
        if change is not None:
            self._emit(EventType.STATUS_CHANGED, actor, record, change)
        else:
            self._emit(EventType.UPDATED, actor, record, {})
        return record

    async def claim(self, actor: Account, record_id: str) -> ProjectRecord:
        return self._mutate(actor, record_id, EventType.CLAIMED, lambda record, now: actions.claim(record, actor, now=now))

    async def unclaim(self, actor: Account, record_id: str) -> ProjectRecord:
        return self._mutate(actor, record_id, EventType.UNCLAIMED, lambda record, now: actions.unclaim(record, actor, now=now))

    async def claim_leadership(self, actor: Account, record_id: str) -> ProjectRecord:
        return self._mutate(
            actor,
            record_id,
            EventType.LEADERSHIP_CLAIMED,
            lambda record, now: actions.claim_leadership(record, actor, now=now),
        )

    async def transfer_leadership(self, actor: Account, record_id: str, to_account: Account) -> ProjectRecord:
        def _transfer(record: ProjectRecord, now: datetime) -> dict[str, Any]:
            actions.transfer_leadership(record, actor, to_account, now=now)
            return {"to": to_account.model_dump(mode="json")}

        return self._mutate(actor, record_id, EventType.LEADERSHIP_TRANSFERRED, _transfer)

    async def add_deliverable(self, actor: Account, record_id: str, *, url: str, title: Optional[str] = None) -> ProjectRecord:
        def _add(record: ProjectRecord, now: datetime) -> dict[str, Any]:
            deliverable = actions.add_deliverable(record, actor, url=url, title=title, now=now)
            return {"url": deliverable.url, "title": deliverable.title, "source": "manual"}

        return self._mutate(actor, record_id, EventType.DELIVERABLE_ADDED, _add)

    async def rate(self, actor: Account, record_id: str, *, score: int, review: Optional[str] = None) -> ProjectRecord:
        def _rate(record: ProjectRecord, now: datetime) -> dict[str, Any]:
            rating = actions.rate(record, actor, score=score, review=review, now=now)
            return {"score": rating.score, "average": record.reputation.average, "count": record.reputation.count}

        return self._mutate(actor, record_id, EventType.RATED, _rate)

    async def add_goal(self, actor: Account, record_id: str, *, title: str) -> ProjectRecord:
        def _add_goal(record: ProjectRecord, now: datetime) -> dict[str, Any]:
            goal = actions.add_goal(record, actor, title=title, now=now)
            return {"goal_id": goal.id, "title": goal.title}

        return self._mutate(actor, record_id, EventType.GOAL_ADDED, _add_goal)

    async def complete_goal(self, actor: Account, record_id: str, *, goal_id: Optional[str] = None) -> ProjectRecord:
        def _complete(record: ProjectRecord, now: datetime) -> dict[str, Any]:
            goal = actions.complete_goal(record, actor, goal_id=goal_id, now=now)
            return {"goal_id": goal.id, "title": goal.title}

        return self._mutate(actor, record_id, EventType.GOAL_COMPLETED, _complete)

    async def delete_project(self, actor: Account, record_id: str) -> ProjectRecord:
        registry = self._store.load()
        record = self._require(registry, record_id)
        actions.check_can_delete(record, actor)
        registry.items = [item for item in registry.items if item.id != record_id]
        self._store.save(registry)
        self._emit(EventType.DELETED, actor, record, {})
        return record

    async def reorder(self, actor: Account, ordered_ids: Iterable[str]) -> list[ProjectRecord]:
        if isinstance(ordered_ids, (str, bytes)):
            raise ValidationFailed("ordered_ids must be a list of record ids")
        registry = self._store.load()
        registry.items = actions.reorder_items(registry.items, list(ordered_ids))
        self._store.save(registry)
        logger.info("Projects reordered", extra=sanitize_log_extra(account_id=actor.account_id, count=len(registry.items)))
        return registry.items

    def _mutate(
        self,
        actor: Account,
        record_id: str,
        event_type: EventType,
        action: Callable[[ProjectRecord, datetime], Optional[dict[str, Any]]],
    ) -> ProjectRecord:
        registry = self._store.load()
        record = self._require(registry, record_id)
        data = action(record, self._clock())
        self._store.save(registry)
        self._emit(event_type, actor, record, data or {})
        return record

    async def _fetch_snapshot(self, repository_url: str) -> RepositorySnapshot:
        ref = actions.validate_repository_url(repository_url)
        if self._github is None:
            raise ValidationFailed("Repository lookups are not configured")
        result = await fetch_snapshot(self._github, ref, fetched_at=self._clock())
        if not result.is_ok or result.data is None:
            raise ValidationFailed(
                "Could not access this GitHub repo. It must be public (open source).",
                repository=ref.path,
                state=result.state.value,
            )
        return result.data

    @staticmethod
    def _require(registry: Registry, record_id: str) -> ProjectRecord:
        record = registry.find(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def _emit(self, event_type: EventType, actor: Account, record: ProjectRecord, data: dict[str, Any]) -> None:
        self._audit.record(
            AuditEvent(
                type=event_type,
                actor=actor,
                record_id=record.id,
                record_title=record.title,
                data=data,
                timestamp=self._clock(),
            )
        )
