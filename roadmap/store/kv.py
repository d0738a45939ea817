"""SQLAlchemy-backed key-value blob store with conditional writes."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Protocol

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roadmap.config.database import SessionLocal
from roadmap.errors import ConcurrencyConflict
from roadmap.models.kv_entry import KeyValueEntry
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StoredValue:
    """Decoded blob plus the version it was read at."""

    value: Any
    version: int


class KeyValueStore(Protocol):
    """Storage interface used by the registry, audit log and caches."""

    def get(self, key: str) -> StoredValue | None: ...

    def put(
        self,
        key: str,
        value: Any,
        *,
        expected_version: int | None = None,
        ttl_seconds: int | None = None,
    ) -> int: ...

    def delete(self, key: str) -> None: ...


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SQLAlchemyKeyValueStore:
    """Key-value store on the ``kv_entries`` table.

    ``put`` with ``expected_version`` is a compare-and-swap: version 0 means
    "the key must not exist yet", any other value must equal the stored
    version. A mismatch raises ``ConcurrencyConflict`` and writes nothing.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key: str) -> StoredValue | None:
        db = self._session_factory()
        try:
            entry = db.get(KeyValueEntry, key)
            if entry is None or self._is_expired(entry):
                return None
            return StoredValue(value=copy.deepcopy(entry.value), version=int(entry.version))
        finally:
            db.close()

    def put(
        self,
        key: str,
        value: Any,
        *,
        expected_version: int | None = None,
        ttl_seconds: int | None = None,
    ) -> int:
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None

        db = self._session_factory()
        try:
            if expected_version is None:
                return self._upsert(db, key, value, expires_at=expires_at)

            if expected_version == 0:
                db.add(KeyValueEntry(key=key, value=value, version=1, expires_at=expires_at, updated_at=now))
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise ConcurrencyConflict(0, self._current_version(db, key))
                return 1

            result = db.execute(
                update(KeyValueEntry)
                .where(KeyValueEntry.key == key, KeyValueEntry.version == expected_version)
                .values(
                    value=value,
                    version=expected_version + 1,
                    expires_at=expires_at,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConcurrencyConflict(expected_version, self._current_version(db, key))
            db.commit()
            return expected_version + 1
        except ConcurrencyConflict:
            raise
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            entry = db.get(KeyValueEntry, key)
            if entry is not None:
                db.delete(entry)
                db.commit()
        finally:
            db.close()

    @staticmethod
    def _upsert(db: Session, key: str, value: Any, *, expires_at: datetime | None) -> int:
        entry = db.get(KeyValueEntry, key)
        if entry is None:
            entry = KeyValueEntry(key=key, value=value, version=1, expires_at=expires_at)
            db.add(entry)
        else:
            entry.value = value
            entry.version = int(entry.version) + 1
            entry.expires_at = expires_at
        db.commit()
        return int(entry.version)

    @staticmethod
    def _current_version(db: Session, key: str) -> int | None:
        entry = db.get(KeyValueEntry, key, populate_existing=True)
        return int(entry.version) if entry is not None else None

    def _is_expired(self, entry: KeyValueEntry) -> bool:
        expires_at = _as_aware(entry.expires_at)
        return expires_at is not None and expires_at <= self._clock()


def compare_and_update(
    store: KeyValueStore,
    key: str,
    mutate: Callable[[Any], Any],
    *,
    default: Callable[[], Any],
    max_attempts: int = 5,
) -> Any | None:
    """Read-modify-write ``key`` with compare-and-swap, retrying on conflict.

    ``mutate`` receives the current value (or ``default()``) and returns the
    new value, or ``None`` to skip the write. Returns the written value, or
    ``None`` if nothing was written.
    """
    for attempt in range(1, max_attempts + 1):
        stored = store.get(key)
        current = stored.value if stored is not None else default()
        updated = mutate(current)
        if updated is None:
            return None
        try:
            store.put(key, updated, expected_version=stored.version if stored is not None else 0)
            return updated
        except ConcurrencyConflict:
            logger.info(
                "Key-value write conflict, retrying",
                extra=sanitize_log_extra(kv_key=key, attempt=attempt, max_attempts=max_attempts),
            )

    logger.warning(
        "Key-value write dropped after conflicts",
        extra=sanitize_log_extra(kv_key=key, attempts=max_attempts),
    )
    return None
