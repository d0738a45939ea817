"""Activity feed client (free-text messages between accounts)."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from roadmap.config.settings import settings
from roadmap.crawlers.base import BaseServiceClient
from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.models.activity import ActivityEntry
from roadmap.models.project import Account


def _account_from_payload(payload: Any) -> Optional[Account]:
    if not isinstance(payload, dict):
        return None
    account_id = payload.get("btcAddress") or payload.get("account_id")
    if not account_id:
        return None
    display_name = payload.get("displayName") or payload.get("display_name") or str(account_id)[:12]
    return Account(account_id=str(account_id), display_name=str(display_name))


def entry_from_payload(payload: dict[str, Any]) -> Optional[ActivityEntry]:
    timestamp = payload.get("timestamp")
    if not timestamp:
        return None
    return ActivityEntry(
        timestamp=str(timestamp),
        type=str(payload.get("type") or ""),
        message_preview=payload.get("messagePreview") or None,
        sender=_account_from_payload(payload.get("agent")),
        recipient=_account_from_payload(payload.get("recipient")),
    )


class ActivityFeedClient(BaseServiceClient):
    """Fetches the most recent entries of the activity feed."""

    def __init__(
        self,
        *,
        feed_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(transport=transport, timeout_seconds=timeout_seconds)
        self._feed_url = feed_url or settings.ACTIVITY_FEED_URL

    async def fetch_recent(self) -> FetchResult[list[ActivityEntry]]:
        response = await self._get_json(self._feed_url)
        if not response.is_ok:
            state = FetchState.EMPTY if response.is_empty else FetchState.FAILED
            return FetchResult(state=state, data=[], status_code=response.status_code, error=response.error)

        rows = response.data.get("events") if isinstance(response.data, dict) else None
        if not isinstance(rows, list):
            return FetchResult(state=FetchState.FAILED, data=[], status_code=response.status_code, error="missing events list")

        entries = [entry for entry in (entry_from_payload(row) for row in rows if isinstance(row, dict)) if entry]
        state = FetchState.OK if entries else FetchState.EMPTY
        return FetchResult(state=state, data=entries, status_code=response.status_code)
