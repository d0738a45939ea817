import logging

import httpx
import pytest

from roadmap.crawlers.contracts import FetchState
from roadmap.crawlers.github.client import GitHubClient
from roadmap.crawlers.github.snapshots import fetch_snapshot, parse_repository_url
from roadmap.models.project import RepositoryKind


def _transport_from_sequence(responses: list[httpx.Response], seen: list[httpx.Request] | None = None) -> httpx.MockTransport:
    queue = responses.copy()

    async def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if not queue:
            raise AssertionError("No more mock responses available")
        return queue.pop(0)

    return httpx.MockTransport(handler)


async def _no_sleep(_: float) -> None:
    return None


@pytest.mark.asyncio
async def test_get_repo_returns_ok_contract_with_auth_header() -> None:
    seen: list[httpx.Request] = []
    transport = _transport_from_sequence(
        [httpx.Response(200, headers={"etag": '"v1"'}, json={"full_name": "acme/tool", "stargazers_count": 3})],
        seen,
    )
    client = GitHubClient(token="test-token", transport=transport, sleeper=_no_sleep)

    result = await client.get_repo("acme", "tool")
    await client.aclose()

    assert result.state == FetchState.OK
    assert result.data["full_name"] == "acme/tool"
    assert result.etag == '"v1"'
    assert seen[0].url.path == "/repos/acme/tool"
    assert seen[0].headers["authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_missing_repo_maps_to_not_found_without_retry() -> None:
    transport = _transport_from_sequence([httpx.Response(404, json={"message": "Not Found"})])
    client = GitHubClient(token="", transport=transport, max_retries=3, sleeper=_no_sleep)

    result = await client.get_repo("acme", "gone")
    await client.aclose()

    assert result.state == FetchState.NOT_FOUND
    assert result.status_code == 404


@pytest.mark.asyncio
async def test_empty_contributor_list_is_empty_contract() -> None:
    seen: list[httpx.Request] = []
    transport = _transport_from_sequence([httpx.Response(200, json=[])], seen)
    client = GitHubClient(token="", transport=transport, sleeper=_no_sleep)

    result = await client.list_contributors("acme", "tool", per_page=5)
    await client.aclose()

    assert result.state == FetchState.EMPTY
    assert result.data == []
    assert seen[0].url.params["per_page"] == "5"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code,headers",
    [
        (429, {"retry-after": "0"}),
        (403, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "0"}),
    ],
)
async def test_rate_limited_responses_retry_then_succeed(status_code: int, headers: dict[str, str]) -> None:
    delays: list[float] = []

    async def sleeper(seconds: float) -> None:
        delays.append(seconds)

    transport = _transport_from_sequence(
        [
            httpx.Response(status_code, headers=headers, json={"message": "slow down"}),
            httpx.Response(200, json=[{"number": 1, "merged_at": None}]),
        ]
    )
    client = GitHubClient(token="", transport=transport, max_retries=2, sleeper=sleeper)

    result = await client.list_closed_pulls("acme", "tool")
    await client.aclose()

    assert result.state == FetchState.OK
    assert len(delays) == 1
    assert delays[0] >= 0


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries_and_redact_log(caplog) -> None:
    transport = _transport_from_sequence([httpx.Response(502), httpx.Response(503)])
    client = GitHubClient(token="ghp_supersecretvalue123", transport=transport, max_retries=2, sleeper=_no_sleep)

    with caplog.at_level(logging.WARNING):
        result = await client.get_repo("acme", "tool")
    await client.aclose()

    assert result.state == FetchState.FAILED
    assert result.status_code == 503
    assert result.error == "HTTP 503"
    assert "ghp_supersecretvalue123" not in caplog.text


@pytest.mark.asyncio
async def test_readme_is_returned_as_raw_text() -> None:
    seen: list[httpx.Request] = []
    transport = _transport_from_sequence([httpx.Response(200, text="# Tool\nLive demo: https://tool.pages.dev\n")], seen)
    client = GitHubClient(token="", transport=transport, sleeper=_no_sleep)

    result = await client.get_readme("acme", "tool")
    await client.aclose()

    assert result.state == FetchState.OK
    assert "tool.pages.dev" in result.data
    assert seen[0].headers["accept"] == "application/vnd.github.raw+json"


@pytest.mark.parametrize(
    "url,kind,path,number",
    [
        ("https://github.com/acme/tool", RepositoryKind.REPO, "acme/tool", None),
        ("https://github.com/acme/tool.git", RepositoryKind.REPO, "acme/tool", None),
        ("https://github.com/acme/tool/pull/42", RepositoryKind.PR, "acme/tool", 42),
        ("https://github.com/acme/tool/issues/7", RepositoryKind.ISSUE, "acme/tool", 7),
    ],
)
def test_parse_repository_url(url: str, kind: RepositoryKind, path: str, number) -> None:
    ref = parse_repository_url(url)

    assert ref is not None
    assert ref.kind == kind
    assert ref.path == path
    assert ref.number == number


def test_parse_repository_url_rejects_other_hosts() -> None:
    assert parse_repository_url("https://gitlab.com/acme/tool") is None
    assert parse_repository_url(None) is None


@pytest.mark.asyncio
async def test_fetch_snapshot_for_merged_pull_request(now) -> None:
    transport = _transport_from_sequence(
        [
            httpx.Response(
                200,
                json={
                    "title": "Add wallet export",
                    "state": "closed",
                    "merged": True,
                    "labels": [{"name": "feature"}],
                },
            )
        ]
    )
    client = GitHubClient(token="", transport=transport, sleeper=_no_sleep)

    result = await fetch_snapshot(client, parse_repository_url("https://github.com/acme/tool/pull/42"), fetched_at=now)
    await client.aclose()

    assert result.is_ok
    snapshot = result.data
    assert snapshot.kind == RepositoryKind.PR
    assert snapshot.number == 42
    assert snapshot.closed is True and snapshot.merged is True
    assert snapshot.labels == ["feature"]
    assert snapshot.fetched_at == now


@pytest.mark.asyncio
async def test_fetch_snapshot_for_repository_payload() -> None:
    transport = _transport_from_sequence(
        [
            httpx.Response(
                200,
                json={
                    "full_name": "acme/tool",
                    "description": "Wallet tool",
                    "archived": False,
                    "stargazers_count": 12,
                    "homepage": "https://tool.vercel.app",
                    "topics": ["bitcoin"],
                    "owner": {"login": "acme"},
                },
            )
        ]
    )
    client = GitHubClient(token="", transport=transport, sleeper=_no_sleep)

    result = await fetch_snapshot(client, parse_repository_url("https://github.com/acme/tool"))
    await client.aclose()

    assert result.data.kind == RepositoryKind.REPO
    assert result.data.homepage == "https://tool.vercel.app"
    assert result.data.stars == 12
    assert result.data.owner_login == "acme"
