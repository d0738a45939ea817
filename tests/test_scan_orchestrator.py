from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import pytest

from roadmap.config.settings import settings
from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.jobs import scan_sync
from roadmap.jobs.scan_sync import is_authorized, normalize_task_selector, run_scan_sync
from roadmap.models.project import Registry
from roadmap.orchestrator_scan import ALL_TASKS, ScanOrchestrator, _stage_result


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class FakeOrchestrator(ScanOrchestrator):
    def __init__(self, kv) -> None:
        super().__init__(kv=kv)
        self.calls: list[dict[str, Any]] = []

    async def run(self, *, reset: bool = False, tasks=None):
        self.calls.append({"reset": reset, "tasks": tasks})
        return {"success": True, "tasks_requested": list(tasks or [])}


def test_orchestrator_keeps_task_isolation_on_failure(monkeypatch, kv) -> None:
    orchestrator = ScanOrchestrator(kv=kv)
    call_order: list[str] = []

    async def fail_repositories(_deadline, **_):
        call_order.append("repositories")
        raise RuntimeError("github unavailable token=abc123")

    async def ok_mentions(_deadline, **_):
        call_order.append("mentions")
        return {"success": True, "stats": {"new_mentions": 2}}

    monkeypatch.setattr(orchestrator, "run_repositories_task", fail_repositories)
    monkeypatch.setattr(orchestrator, "run_mentions_task", ok_mentions)

    result = asyncio.run(orchestrator.run(tasks=["repositories", "mentions"]))

    assert call_order == ["repositories", "mentions"]
    assert result["tasks"]["repositories"]["success"] is False
    assert result["tasks"]["mentions"]["success"] is True
    assert result["success"] is False
    assert any(error.startswith("repositories:") for error in result["errors"])
    assert "abc123" not in str(result)


def test_orchestrator_skips_tasks_after_time_budget(monkeypatch, kv) -> None:
    monotonic = FakeMonotonic()
    orchestrator = ScanOrchestrator(kv=kv, monotonic=monotonic, time_budget_seconds=10)
    called: list[str] = []

    async def slow_repositories(_deadline, **_):
        called.append("repositories")
        monotonic.value += 15
        return {"success": True, "stats": {}}

    async def never(_deadline, **_):
        called.append("mentions")
        return {"success": True, "stats": {}}

    monkeypatch.setattr(orchestrator, "run_repositories_task", slow_repositories)
    monkeypatch.setattr(orchestrator, "run_mentions_task", never)

    result = asyncio.run(orchestrator.run(tasks=["repositories", "mentions"]))

    assert called == ["repositories"]
    assert result["tasks"]["mentions"] == {"success": True, "skipped": True, "reason": "time_budget"}
    assert result["success"] is True
    assert result["elapsed_ms"] == 15000


def test_orchestrator_runs_tasks_in_fixed_order(monkeypatch, kv) -> None:
    orchestrator = ScanOrchestrator(kv=kv)
    order: list[str] = []

    for task in ALL_TASKS:
        async def runner(_deadline, *, reset=False, _task=task):
            order.append(_task)
            return {"success": True, "stats": {"reset": reset}}

        monkeypatch.setattr(orchestrator, f"run_{task}_task", runner)

    result = asyncio.run(orchestrator.run(reset=True, tasks=["backfill", "repositories"]))

    assert order == ["repositories", "backfill"]
    assert result["tasks_requested"] == ["repositories", "backfill"]
    assert result["tasks"]["backfill"]["stats"] == {"reset": True}


@dataclass
class _Stats:
    checked: int = 1
    save_outcome: Optional[str] = None


def test_stage_result_fails_only_on_dropped_save() -> None:
    assert _stage_result(_Stats(save_outcome="applied")) == {"success": True, "stats": {"checked": 1, "save_outcome": "applied"}}
    dropped = _stage_result(_Stats(save_outcome="dropped"))
    assert dropped["success"] is False
    assert "dropped" in dropped["error"]


class _ContextGitHub:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        return None

    async def get_repo(self, owner: str, repo: str, **_: Any) -> FetchResult[Any]:
        return FetchResult(state=FetchState.OK, data={"full_name": f"{owner}/{repo}", "archived": True}, status_code=200)


def test_repositories_task_runs_refresh_stage(kv, make_record, repo_snapshot) -> None:
    orchestrator = ScanOrchestrator(kv=kv, github_client_factory=_ContextGitHub)
    orchestrator.store.save(Registry(items=[make_record(record_id="r_tool", snapshot=repo_snapshot(fetched_at=None))]))

    result = asyncio.run(orchestrator.run(tasks=["repositories"]))

    assert result["success"] is True
    assert result["tasks"]["repositories"]["stats"]["refreshed"] == 1
    assert orchestrator.store.load().find("r_tool").snapshot.archived is True


def test_normalize_task_selector() -> None:
    assert normalize_task_selector(None) == list(ALL_TASKS)
    assert normalize_task_selector("mentions, websites,bogus") == ["mentions", "websites"]
    assert normalize_task_selector(["events"]) == ["events"]
    assert normalize_task_selector("bogus") == list(ALL_TASKS)


def test_scan_job_forwards_reset_and_tasks(kv) -> None:
    orchestrator = FakeOrchestrator(kv)

    result = asyncio.run(run_scan_sync(orchestrator=orchestrator, reset=True, tasks="mentions,backfill"))

    assert orchestrator.calls == [{"reset": True, "tasks": ["mentions", "backfill"]}]
    assert result["success"] is True


def test_refresh_key_authorization() -> None:
    assert is_authorized(None, expected_key="")
    assert is_authorized("s3cret", expected_key="s3cret")
    assert not is_authorized("wrong", expected_key="s3cret")
    assert not is_authorized(None, expected_key="s3cret")


def test_main_rejects_wrong_refresh_key(monkeypatch, capsys) -> None:
    monkeypatch.setattr(settings, "REFRESH_KEY", "s3cret")

    with pytest.raises(SystemExit) as excinfo:
        scan_sync.main(["--key", "wrong"])

    assert excinfo.value.code == 2
    assert "Unauthorized" in capsys.readouterr().err
