"""Activity feed entries and audit events"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from roadmap.models.project import Account
from roadmap.utils.helpers import generate_id, utc_now


class ActivityEntry(BaseModel):
    """One entry of the external activity feed (also the archive format)."""

    model_config = ConfigDict(extra="ignore")

    timestamp: str
    type: str = "message"
    message_preview: Optional[str] = None
    sender: Optional[Account] = None
    recipient: Optional[Account] = None

    @property
    def is_message(self) -> bool:
        return self.type == "message" and bool(self.message_preview)


class EventType(str, Enum):
    CREATED = "item.created"
    UPDATED = "item.updated"
    DELETED = "item.deleted"
    STATUS_CHANGED = "item.status_changed"
    STATUS_SYNCED = "item.status_synced"
    CLAIMED = "item.claimed"
    UNCLAIMED = "item.unclaimed"
    LEADERSHIP_CLAIMED = "item.leadership_claimed"
    LEADERSHIP_TRANSFERRED = "item.leadership_transferred"
    DELIVERABLE_ADDED = "item.deliverable_added"
    RATED = "item.rated"
    GOAL_ADDED = "item.goal_added"
    GOAL_COMPLETED = "item.goal_completed"
    MENTIONED = "item.mentioned"


class AuditEvent(BaseModel):
    """Audit stream entry; ``data`` is specific to the event type."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: generate_id("e"))
    type: EventType
    actor: Optional[Account] = None
    record_id: Optional[str] = None
    record_title: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
