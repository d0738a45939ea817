from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.crawlers.scan.base import Deadline
from roadmap.crawlers.scan.website_stage import WebsiteDiscoveryStage
from roadmap.errors import ConcurrencyConflict
from roadmap.models.project import Registry, Website, WebsiteSource
from roadmap.models.scan_state import ScanKind
from roadmap.store.migrations import CURRENT_SCHEMA_VERSION


class FakeGitHub:
    def __init__(self, readmes: dict[str, FetchResult[str]] | None = None) -> None:
        self.readmes = readmes or {}
        self.calls: list[str] = []

    async def get_readme(self, owner: str, repo: str) -> FetchResult[str]:
        self.calls.append(f"{owner}/{repo}")
        return self.readmes.get(f"{owner}/{repo}", FetchResult(state=FetchState.EMPTY, data="", status_code=200))


def _readme(text: str) -> FetchResult[str]:
    return FetchResult(state=FetchState.OK, data=text, status_code=200)


def _registry(*, items: list) -> Registry:
    return Registry(items=items, schema_version=CURRENT_SCHEMA_VERSION)


def _stage(store, scan_state, archive, github, clock) -> WebsiteDiscoveryStage:
    return WebsiteDiscoveryStage(
        store=store,
        scan_state=scan_state,
        archive=archive,
        github_client=github,
        clock=clock,
        self_hosts=["aibtc-projects.pages.dev"],
    )


@pytest.mark.asyncio
async def test_readme_deployment_url_is_claimed(store, scan_state, archive, make_record, repo_snapshot, clock) -> None:
    store.save(
        _registry(
            items=[make_record("Ordinal Lens", record_id="r_lens", repository_url="https://github.com/acme/lens", snapshot=repo_snapshot())]
        )
    )
    github = FakeGitHub({"acme/lens": _readme("# Ordinal Lens\n\nLive demo: https://ordinal-lens.pages.dev\n")})

    stats = await _stage(store, scan_state, archive, github, clock).run(Deadline(60))

    website = store.load().find("r_lens").website
    assert website.url == "https://ordinal-lens.pages.dev"
    assert website.source == WebsiteSource.README
    assert stats.discovered == 1 and stats.scanned_repos == 1
    assert scan_state.load_repo_state().repo("acme/lens").mark(ScanKind.WEBSITE).last_scan_at == clock()


@pytest.mark.asyncio
async def test_shared_homepage_is_claimed_once(store, scan_state, archive, make_record, repo_snapshot, clock) -> None:
    shared = "https://suite.vercel.app"
    store.save(
        _registry(
            items=[
                make_record("Suite API", record_id="r_api", repository_url="https://github.com/acme/api", snapshot=repo_snapshot(homepage=shared)),
                make_record("Suite UI", record_id="r_ui", repository_url="https://github.com/acme/ui", snapshot=repo_snapshot(homepage=shared)),
            ]
        )
    )
    github = FakeGitHub()

    await _stage(store, scan_state, archive, github, clock).run(Deadline(60))

    registry = store.load()
    claims = [record.website.url for record in registry.items if record.website is not None]
    assert claims == [shared]
    assert registry.find("r_api").website.source == WebsiteSource.HOMEPAGE
    assert registry.find("r_ui").website is None
    assert github.calls == ["acme/ui"]


@pytest.mark.asyncio
async def test_revalidation_clears_duplicates_and_resets_cooldown(
    store, scan_state, archive, make_record, repo_snapshot, clock, now
) -> None:
    url = "https://dup.netlify.app"
    store.save(
        _registry(
            items=[
                make_record(
                    "First",
                    record_id="r_first",
                    repository_url="https://github.com/acme/first",
                    snapshot=repo_snapshot(),
                    website=Website(url=url, source=WebsiteSource.README, discovered_at=now),
                ),
                make_record(
                    "Second",
                    record_id="r_second",
                    repository_url="https://github.com/acme/second",
                    snapshot=repo_snapshot(),
                    website=Website(url=url, source=WebsiteSource.MESSAGE, discovered_at=now),
                ),
            ]
        )
    )
    state = scan_state.load_repo_state()
    state.record_success("acme/second", ScanKind.WEBSITE, now - timedelta(minutes=1))
    scan_state.save_repo_state(state)
    github = FakeGitHub({"acme/second": _readme("Try it: https://second.fly.dev")})

    stats = await _stage(store, scan_state, archive, github, clock).run(Deadline(60))

    registry = store.load()
    assert registry.find("r_first").website.url == url
    assert registry.find("r_second").website.url == "https://second.fly.dev"
    assert stats.cleared == 1 and stats.discovered == 1


@pytest.mark.asyncio
async def test_homepage_claim_follows_homepage_change(store, scan_state, archive, make_record, repo_snapshot, clock, now) -> None:
    store.save(
        _registry(
            items=[
                make_record(
                    record_id="r_tool",
                    snapshot=repo_snapshot(homepage="https://tool-v2.vercel.app"),
                    website=Website(url="https://tool.vercel.app", source=WebsiteSource.HOMEPAGE, discovered_at=now),
                )
            ]
        )
    )

    stats = await _stage(store, scan_state, archive, FakeGitHub(), clock).run(Deadline(60))

    assert stats.synced == 1
    assert store.load().find("r_tool").website.url == "https://tool-v2.vercel.app"


@pytest.mark.asyncio
async def test_readme_failure_records_backoff(store, scan_state, archive, make_record, repo_snapshot, clock) -> None:
    store.save(_registry(items=[make_record(record_id="r_tool", snapshot=repo_snapshot())]))
    github = FakeGitHub({"acme/stacks-explorer": FetchResult(state=FetchState.FAILED, error="HTTP 500", status_code=500)})

    stats = await _stage(store, scan_state, archive, github, clock).run(Deadline(60))

    assert stats.errors and "README fetch failed" in stats.errors[0]
    assert scan_state.load_repo_state().repo("acme/stacks-explorer").mark(ScanKind.WEBSITE).failures == 1
    assert store.load().find("r_tool").website is None


@pytest.mark.asyncio
async def test_dropped_claim_is_retried_without_waiting_for_cooldown(
    monkeypatch, store, scan_state, archive, make_record, repo_snapshot, clock
) -> None:
    store.save(
        _registry(
            items=[make_record("Ordinal Lens", record_id="r_lens", repository_url="https://github.com/acme/lens", snapshot=repo_snapshot())]
        )
    )
    github = FakeGitHub({"acme/lens": _readme("Live demo: https://ordinal-lens.pages.dev")})
    stage = _stage(store, scan_state, archive, github, clock)

    def always_conflict(registry):
        raise ConcurrencyConflict(registry.write_version, registry.write_version + 1)

    monkeypatch.setattr(store, "save", always_conflict)
    first = await stage.run(Deadline(60))
    monkeypatch.undo()
    clock.advance(minutes=1)
    second = await stage.run(Deadline(60))

    assert first.save_outcome == "dropped"
    assert second.discovered == 1
    assert github.calls == ["acme/lens", "acme/lens"]
    assert store.load().find("r_lens").website.url == "https://ordinal-lens.pages.dev"
