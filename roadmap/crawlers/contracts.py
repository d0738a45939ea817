"""Typed contracts for external service responses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class FetchState(str, Enum):
    """Normalized response state for downstream scan stages."""

    OK = "ok"
    UNCHANGED = "unchanged"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Container that separates payload from fetch semantics."""

    state: FetchState
    data: Optional[T] = None
    etag: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_unchanged(self) -> bool:
        return self.state == FetchState.UNCHANGED

    @property
    def is_empty(self) -> bool:
        return self.state == FetchState.EMPTY

    @property
    def is_not_found(self) -> bool:
        return self.state == FetchState.NOT_FOUND

    @property
    def is_failed(self) -> bool:
        return self.state == FetchState.FAILED


RepoPayload = dict[str, Any]
PullPayload = dict[str, Any]
IssuePayload = dict[str, Any]
ContributorPayload = list[dict[str, Any]]
PullListPayload = list[dict[str, Any]]
ContentPayload = str

RepoContract = FetchResult[RepoPayload]
PullContract = FetchResult[PullPayload]
IssueContract = FetchResult[IssuePayload]
ContributorContract = FetchResult[ContributorPayload]
PullListContract = FetchResult[PullListPayload]
ContentContract = FetchResult[ContentPayload]
