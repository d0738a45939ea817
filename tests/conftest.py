from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import pytest

from roadmap.config.database import build_session_factory
from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.models.activity import ActivityEntry
from roadmap.models.project import Account, ProjectRecord, RepositoryKind, RepositorySnapshot
from roadmap.store.archive import MessageArchive
from roadmap.store.audit import AuditLog
from roadmap.store.kv import SQLAlchemyKeyValueStore
from roadmap.store.scan_state import ScanStateStore
from roadmap.store.versioned import VersionedStore
from roadmap.utils.helpers import generate_id

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

FOUNDER = Account(account_id="bc1qfounder0000", display_name="Founder")
ALICE = Account(account_id="bc1qalice000000", display_name="Alice")
BOB = Account(account_id="bc1qbob00000000", display_name="Bob")


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current = self.current + timedelta(**delta)


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock: FakeClock) -> SQLAlchemyKeyValueStore:
    return SQLAlchemyKeyValueStore(build_session_factory("sqlite://"), clock=clock)


@pytest.fixture
def store(kv: SQLAlchemyKeyValueStore) -> VersionedStore:
    return VersionedStore(kv, sleeper=_no_sleep)


@pytest.fixture
def audit(kv: SQLAlchemyKeyValueStore) -> AuditLog:
    return AuditLog(kv)


@pytest.fixture
def archive(kv: SQLAlchemyKeyValueStore) -> MessageArchive:
    return MessageArchive(kv)


@pytest.fixture
def scan_state(kv: SQLAlchemyKeyValueStore) -> ScanStateStore:
    return ScanStateStore(kv)


@pytest.fixture
def accounts() -> dict[str, Account]:
    return {"founder": FOUNDER, "alice": ALICE, "bob": BOB}


@pytest.fixture
def make_record():
    def _make(
        title: str = "Stacks Explorer",
        *,
        record_id: Optional[str] = None,
        repository_url: Optional[str] = "https://github.com/acme/stacks-explorer",
        snapshot: Optional[RepositorySnapshot] = None,
        **fields: Any,
    ) -> ProjectRecord:
        fields.setdefault("founder", FOUNDER)
        fields.setdefault("created_at", NOW)
        fields.setdefault("updated_at", NOW)
        return ProjectRecord(
            id=record_id or generate_id("r"),
            title=title,
            repository_url=repository_url,
            snapshot=snapshot,
            **fields,
        )

    return _make


@pytest.fixture
def repo_snapshot():
    def _snapshot(**fields: Any) -> RepositorySnapshot:
        fields.setdefault("kind", RepositoryKind.REPO)
        fields.setdefault("fetched_at", NOW)
        return RepositorySnapshot(**fields)

    return _snapshot


@pytest.fixture
def message():
    def _message(
        text: str,
        *,
        timestamp: str,
        sender: Optional[Account] = ALICE,
        recipient: Optional[Account] = None,
    ) -> ActivityEntry:
        return ActivityEntry(
            timestamp=timestamp,
            type="message",
            message_preview=text,
            sender=sender,
            recipient=recipient,
        )

    return _message


class FakeActivityClient:
    def __init__(self, entries: Optional[list[ActivityEntry]] = None, *, failed: bool = False) -> None:
        self.entries = entries or []
        self.failed = failed
        self.calls = 0

    async def fetch_recent(self) -> FetchResult[list[ActivityEntry]]:
        self.calls += 1
        if self.failed:
            return FetchResult(state=FetchState.FAILED, data=[], status_code=503, error="HTTP 503")
        state = FetchState.OK if self.entries else FetchState.EMPTY
        return FetchResult(state=state, data=list(self.entries), status_code=200)


@pytest.fixture
def activity_client():
    return FakeActivityClient
