"""Activity-feed mention scan stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.scan.base import Deadline
from roadmap.models.activity import ActivityEntry, AuditEvent, EventType
from roadmap.models.project import Account, ProjectRecord
from roadmap.services.mention_matcher import MatchTerm, build_match_terms, match_mention
from roadmap.store.archive import MessageArchive
from roadmap.store.audit import AuditLog
from roadmap.store.delta import RecordOperation, RegistryDelta
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MentionStageStats:
    scanned: bool = False
    reason: Optional[str] = None
    reset: bool = False
    messages: int = 0
    archived: int = 0
    new_mentions: int = 0
    deadline_reached: bool = False
    save_outcome: Optional[str] = None


@dataclass(slots=True)
class _Mention:
    record_id: str
    record_title: str
    match_type: str
    entry: ActivityEntry


@dataclass(slots=True)
class _ResetTally:
    count: int = 0
    senders: list[Account] = field(default_factory=list)


class MentionScanStage:
    """Count activity-feed messages that mention each record.

    Incremental mode processes each feed entry once (tracked by timestamp).
    Reset mode zeroes every counter and recounts from the live feed plus the
    message archive without emitting per-mention audit events.
    """

    def __init__(
        self,
        *,
        store: VersionedStore,
        audit: AuditLog,
        archive: MessageArchive,
        scan_state: ScanStateStore,
        activity_client: Any,
        clock: Callable[[], datetime] = utc_now,
        cooldown_minutes: Optional[int] = None,
        processed_limit: Optional[int] = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._archive = archive
        self._scan_state = scan_state
        self._activity = activity_client
        self._clock = clock
        self._cooldown = timedelta(minutes=cooldown_minutes or settings.MENTION_SCAN_COOLDOWN_MINUTES)
        self._processed_limit = processed_limit or settings.PROCESSED_ENTRY_LIMIT

    async def run(self, deadline: Deadline, *, reset: bool = False) -> MentionStageStats:
        stats = MentionStageStats(reset=reset)
        now = self._clock()
        state = self._scan_state.load_mention_state()
        if not reset and state.last_scan_at is not None and now - state.last_scan_at < self._cooldown:
            stats.reason = "cooldown"
            return stats

        feed = await self._activity.fetch_recent()
        if feed.is_failed:
            stats.reason = "api_error"
            return stats

        live = [entry for entry in feed.data or [] if entry.is_message]
        stats.archived = self._archive.append(live)
        if reset:
            processed: list[str] = []
            source = self._with_archive(live)
        else:
            processed = list(state.processed_ids)
            source = live

        seen = set(processed)
        pending = [entry for entry in source if entry.timestamp not in seen]
        stats.scanned = True
        stats.messages = len(pending)

        registry = self._store.load()
        delta = RegistryDelta()
        terms = {record.id: build_match_terms(record) for record in registry.items}
        mentions: list[_Mention] = []

        if reset:
            completed = self._recount(registry.items, pending, terms, delta, deadline, mentions)
        else:
            completed = self._count_new(registry.items, pending, terms, delta, deadline, mentions)
        stats.deadline_reached = len(completed) < len(pending)
        stats.new_mentions = len(mentions)

        save = await self._store.save_with_retry(registry, delta)
        stats.save_outcome = save.outcome.value
        if save.dropped:
            logger.warning("Mention scan changes dropped; entries stay unprocessed", extra=sanitize_log_extra(entries=len(completed)))
            return stats

        if not reset and mentions:
            self._audit.record_many(self._events(mentions, now))

        for timestamp in completed:
            if timestamp not in seen:
                processed.append(timestamp)
                seen.add(timestamp)
        state.processed_ids = processed[-self._processed_limit:]
        state.last_scan_at = now
        self._scan_state.save_mention_state(state)
        return stats

    def _with_archive(self, live: list[ActivityEntry]) -> list[ActivityEntry]:
        live_timestamps = {entry.timestamp for entry in live}
        merged = list(live)
        for entry in self._archive.messages():
            if entry.timestamp not in live_timestamps and entry.is_message:
                merged.append(entry)
                live_timestamps.add(entry.timestamp)
        return merged

    @staticmethod
    def _count_new(
        records: list[ProjectRecord],
        entries: list[ActivityEntry],
        terms: dict[str, list[MatchTerm]],
        delta: RegistryDelta,
        deadline: Deadline,
        mentions: list[_Mention],
    ) -> list[str]:
        completed: list[str] = []
        for entry in entries:
            if deadline.expired:
                break
            for record in records:
                match = match_mention(entry.message_preview, record, terms=terms[record.id])
                if match is None:
                    continue
                delta.apply(record, _increment_mentions(entry.sender))
                mentions.append(_Mention(record.id, record.title, match.value, entry))
            completed.append(entry.timestamp)
        return completed

    @staticmethod
    def _recount(
        records: list[ProjectRecord],
        entries: list[ActivityEntry],
        terms: dict[str, list[MatchTerm]],
        delta: RegistryDelta,
        deadline: Deadline,
        mentions: list[_Mention],
    ) -> list[str]:
        tallies = {record.id: _ResetTally() for record in records}
        completed: list[str] = []
        for entry in entries:
            if deadline.expired:
                break
            for record in records:
                match = match_mention(entry.message_preview, record, terms=terms[record.id])
                if match is None:
                    continue
                tally = tallies[record.id]
                tally.count += 1
                if entry.sender is not None:
                    tally.senders.append(entry.sender)
                mentions.append(_Mention(record.id, record.title, match.value, entry))
            completed.append(entry.timestamp)

        if len(completed) < len(entries):
            # partial recount would lower counters; keep the previous totals
            mentions.clear()
            return []

        for record in records:
            tally = tallies[record.id]
            delta.apply(record, _set_mentions(tally.count, tally.senders))
        return completed

    @staticmethod
    def _events(mentions: list[_Mention], now: datetime) -> list[AuditEvent]:
        return [
            AuditEvent(
                type=EventType.MENTIONED,
                actor=mention.entry.sender,
                record_id=mention.record_id,
                record_title=mention.record_title,
                data={
                    "match_type": mention.match_type,
                    "message_preview": mention.entry.message_preview,
                    "recipient": mention.entry.recipient.model_dump(mode="json") if mention.entry.recipient else None,
                },
                timestamp=now,
            )
            for mention in mentions
        ]


def _increment_mentions(sender: Optional[Account]) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        record.mentions += 1
        record.add_contributor(sender)
        return True

    return operation


def _set_mentions(count: int, senders: list[Account]) -> RecordOperation:
    def operation(record: ProjectRecord) -> bool:
        changed = record.mentions != count
        record.mentions = count
        for sender in senders:
            changed = record.add_contributor(sender) or changed
        return changed

    return operation
