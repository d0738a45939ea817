"""GitHub crawler primitives."""

from roadmap.crawlers.github.client import GitHubClient
from roadmap.crawlers.contracts import (
    ContentContract,
    ContributorContract,
    FetchResult,
    FetchState,
    IssueContract,
    PullContract,
    PullListContract,
    RepoContract,
)
from roadmap.crawlers.github.snapshots import RepositoryRef, fetch_snapshot, parse_repository_url, snapshot_from_payload

__all__ = [
    "GitHubClient",
    "FetchState",
    "FetchResult",
    "RepoContract",
    "PullContract",
    "IssueContract",
    "ContributorContract",
    "PullListContract",
    "ContentContract",
    "RepositoryRef",
    "fetch_snapshot",
    "parse_repository_url",
    "snapshot_from_payload",
]
