"""Repository URL parsing and snapshot construction from GitHub payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.models.project import RepositoryKind, RepositorySnapshot
from roadmap.utils.helpers import utc_now

_ISSUE_OR_PULL = re.compile(r"github\.com/([^/\s]+)/([^/\s]+)/(issues|pull)/(\d+)", re.IGNORECASE)
_REPO = re.compile(r"github\.com/([^/\s]+)/([^/?#\s]+)", re.IGNORECASE)
REPO_URL_PATTERN = re.compile(r"^https?://(www\.)?github\.com/", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """Owner/repo plus the kind of object a repository URL points at."""

    owner: str
    repo: str
    kind: RepositoryKind
    number: Optional[int] = None

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repository_url(url: Optional[str]) -> Optional[RepositoryRef]:
    if not url:
        return None
    match = _ISSUE_OR_PULL.search(url)
    if match:
        kind = RepositoryKind.PR if match.group(3).lower() == "pull" else RepositoryKind.ISSUE
        return RepositoryRef(owner=match.group(1), repo=match.group(2), kind=kind, number=int(match.group(4)))
    match = _REPO.search(url)
    if match:
        repo = match.group(2)
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        return RepositoryRef(owner=match.group(1), repo=repo, kind=RepositoryKind.REPO)
    return None


def snapshot_from_payload(
    ref: RepositoryRef,
    payload: dict[str, Any],
    *,
    fetched_at: Optional[datetime] = None,
) -> RepositorySnapshot:
    fetched = fetched_at or utc_now()
    if ref.kind == RepositoryKind.REPO:
        description = payload.get("description") or None
        topics = payload.get("topics") if isinstance(payload.get("topics"), list) else []
        owner = payload.get("owner") if isinstance(payload.get("owner"), dict) else {}
        return RepositorySnapshot(
            kind=RepositoryKind.REPO,
            title=description or payload.get("full_name") or ref.path,
            description=description,
            archived=bool(payload.get("archived") or False),
            labels=[str(topic) for topic in topics],
            stars=int(payload.get("stargazers_count") or 0),
            homepage=(payload.get("homepage") or None),
            owner_login=owner.get("login"),
            fetched_at=fetched,
        )

    labels = payload.get("labels") if isinstance(payload.get("labels"), list) else []
    return RepositorySnapshot(
        kind=ref.kind,
        number=ref.number,
        title=payload.get("title"),
        closed=str(payload.get("state") or "").lower() == "closed",
        merged=bool(payload.get("merged") or payload.get("merged_at")),
        labels=[str(label.get("name")) for label in labels if isinstance(label, dict) and label.get("name")],
        fetched_at=fetched,
    )


async def fetch_snapshot(
    client: Any,
    ref: RepositoryRef,
    *,
    fetched_at: Optional[datetime] = None,
) -> FetchResult[RepositorySnapshot]:
    """Fetch the object behind ``ref`` and convert it to a snapshot."""
    if ref.kind == RepositoryKind.PR:
        response = await client.get_pull(ref.owner, ref.repo, ref.number)
    elif ref.kind == RepositoryKind.ISSUE:
        response = await client.get_issue(ref.owner, ref.repo, ref.number)
    else:
        response = await client.get_repo(ref.owner, ref.repo)

    if response.is_ok and isinstance(response.data, dict):
        return FetchResult(
            state=FetchState.OK,
            data=snapshot_from_payload(ref, response.data, fetched_at=fetched_at),
            status_code=response.status_code,
        )
    state = response.state if not response.is_ok else FetchState.FAILED
    return FetchResult(state=state, status_code=response.status_code, error=response.error)
