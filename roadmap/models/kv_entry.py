"""Key-value entry model backing the registry blob store"""

from sqlalchemy import JSON, Column, DateTime, Integer, String
from datetime import UTC, datetime
from roadmap.config.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KeyValueEntry(Base):
    """
    One JSON blob stored under a string key

    ``version`` is bumped on every write and is the compare-and-swap token
    for conditional writes. ``expires_at`` marks cache entries.
    """
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<KeyValueEntry {self.key} v{self.version}>"
