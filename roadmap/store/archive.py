"""Capacity-bounded archive of observed activity-feed messages."""

from __future__ import annotations

from typing import Any, Iterable

from roadmap.config.settings import settings
from roadmap.models.activity import ActivityEntry
from roadmap.store.kv import KeyValueStore, compare_and_update

MESSAGE_ARCHIVE_KEY = "roadmap:message-archive"


class MessageArchive:
    """Newest-first message log, deduplicated by entry timestamp."""

    def __init__(self, kv: KeyValueStore, *, limit: int | None = None) -> None:
        self._kv = kv
        self._limit = limit or settings.MESSAGE_ARCHIVE_LIMIT

    def messages(self) -> list[ActivityEntry]:
        stored = self._kv.get(MESSAGE_ARCHIVE_KEY)
        if stored is None:
            return []
        return [ActivityEntry.model_validate(row) for row in stored.value.get("messages") or []]

    def append(self, entries: Iterable[ActivityEntry]) -> int:
        """Archive message entries not seen before. Returns how many were added."""
        candidates = [entry for entry in entries if entry.is_message and entry.timestamp]
        if not candidates:
            return 0

        added = 0

        def _merge(current: dict[str, Any]) -> dict[str, Any] | None:
            nonlocal added
            existing = list(current.get("messages") or [])
            seen = {row.get("timestamp") for row in existing}
            added = 0
            for entry in candidates:
                if entry.timestamp in seen:
                    continue
                existing.append(entry.model_dump(mode="json"))
                seen.add(entry.timestamp)
                added += 1
            if added == 0:
                return None
            existing.sort(key=lambda row: row.get("timestamp") or "", reverse=True)
            return {"version": 1, "messages": existing[: self._limit]}

        written = compare_and_update(self._kv, MESSAGE_ARCHIVE_KEY, _merge, default=lambda: {"version": 1, "messages": []})
        return added if written is not None else 0
