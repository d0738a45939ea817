"""Backfill message details into historical mention events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from roadmap.crawlers.scan.base import Deadline
from roadmap.errors import ConcurrencyConflict
from roadmap.models.activity import EventType
from roadmap.services.mention_matcher import match_mention
from roadmap.store.audit import AuditLog
from roadmap.store.versioned import VersionedStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackfillStageStats:
    backfilled: int = 0
    total: int = 0
    error: Optional[str] = None


class MentionBackfillStage:
    """Fill ``message_preview``/``recipient`` on mention events recorded without them.

    Reads the registry for matching but writes only to the audit log.
    """

    def __init__(self, *, store: VersionedStore, audit: AuditLog, activity_client: Any) -> None:
        self._store = store
        self._audit = audit
        self._activity = activity_client

    async def run(self, deadline: Deadline) -> BackfillStageStats:
        del deadline
        stats = BackfillStageStats()
        events, version = self._audit.load()
        pending = [
            event
            for event in events
            if event.type == EventType.MENTIONED and not event.data.get("message_preview")
        ]
        stats.total = len(pending)
        if not pending:
            return stats

        feed = await self._activity.fetch_recent()
        if feed.is_failed:
            stats.error = "activity_api_error"
            return stats
        messages = [entry for entry in feed.data or [] if entry.is_message]
        if not messages:
            return stats

        registry = self._store.load()
        for event in pending:
            record = registry.find(event.record_id) if event.record_id else None
            if record is None:
                continue
            sender_id = event.actor.account_id if event.actor else None
            match = next(
                (
                    entry
                    for entry in messages
                    if (sender_id is None or (entry.sender is not None and entry.sender.account_id == sender_id))
                    and match_mention(entry.message_preview, record) is not None
                ),
                None,
            )
            if match is None:
                continue
            event.data["message_preview"] = match.message_preview
            if match.recipient is not None:
                event.data["recipient"] = match.recipient.model_dump(mode="json")
            # one feed message fills at most one event
            messages.remove(match)
            stats.backfilled += 1

        if stats.backfilled:
            try:
                self._audit.replace(events, expected_version=version)
            except ConcurrencyConflict:
                logger.warning("Mention backfill skipped, audit log changed", extra={"backfilled": stats.backfilled})
                stats.error = "conflict"
                stats.backfilled = 0
        return stats
