"""Append-only audit event log kept in the key-value store."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from roadmap.config.settings import settings
from roadmap.errors import ConcurrencyConflict
from roadmap.models.activity import AuditEvent, EventType
from roadmap.store.kv import KeyValueStore, compare_and_update

logger = logging.getLogger(__name__)

EVENTS_KEY = "roadmap:events"


class AuditLog:
    """Newest-first, capped list of audit events."""

    def __init__(self, kv: KeyValueStore, *, limit: int | None = None) -> None:
        self._kv = kv
        self._limit = limit or settings.AUDIT_LOG_LIMIT

    def record(self, event: AuditEvent) -> None:
        self.record_many([event])

    def record_many(self, events: Iterable[AuditEvent]) -> int:
        new_rows = [event.model_dump(mode="json") for event in events]
        if not new_rows:
            return 0

        def _prepend(current: dict[str, Any]) -> dict[str, Any]:
            existing = list(current.get("events") or [])
            return {"version": 1, "events": (list(reversed(new_rows)) + existing)[: self._limit]}

        written = compare_and_update(self._kv, EVENTS_KEY, _prepend, default=lambda: {"version": 1, "events": []})
        return len(new_rows) if written is not None else 0

    def list_events(
        self,
        *,
        event_type: EventType | str | None = None,
        record_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        events, _ = self.load()
        wanted_type = EventType(event_type) if event_type is not None else None
        selected = [
            event
            for event in events
            if (wanted_type is None or event.type == wanted_type)
            and (record_id is None or event.record_id == record_id)
        ]
        return selected[:limit] if limit is not None else selected

    def load(self) -> tuple[list[AuditEvent], int]:
        stored = self._kv.get(EVENTS_KEY)
        if stored is None:
            return [], 0
        events: list[AuditEvent] = []
        for row in stored.value.get("events") or []:
            try:
                events.append(AuditEvent.model_validate(row))
            except ValueError:
                logger.warning("Skipping malformed audit event", extra={"event_id": row.get("id")})
        return events, stored.version

    def replace(self, events: list[AuditEvent], *, expected_version: int) -> None:
        """Overwrite the log if it is still at ``expected_version``.

        Raises ``ConcurrencyConflict`` when another writer appended first.
        """
        payload = {"version": 1, "events": [event.model_dump(mode="json") for event in events[: self._limit]]}
        try:
            self._kv.put(EVENTS_KEY, payload, expected_version=expected_version)
        except ConcurrencyConflict:
            logger.info("Audit log changed during rewrite", extra={"expected_version": expected_version})
            raise
