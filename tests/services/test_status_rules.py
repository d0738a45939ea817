from __future__ import annotations

import pytest

from roadmap.models.activity import EventType
from roadmap.models.project import ProjectStatus, RepositoryKind, RepositorySnapshot
from roadmap.services.status import (
    derive_status,
    is_manual_status_allowed,
    reconcile_status,
    status_sync_event,
    transition_for,
)


@pytest.mark.parametrize(
    "snapshot,expected",
    [
        (None, ProjectStatus.TODO),
        (RepositorySnapshot(kind=RepositoryKind.REPO), ProjectStatus.IN_PROGRESS),
        (RepositorySnapshot(kind=RepositoryKind.REPO, archived=True), ProjectStatus.DONE),
        (RepositorySnapshot(kind=RepositoryKind.PR), ProjectStatus.IN_PROGRESS),
        (RepositorySnapshot(kind=RepositoryKind.PR, closed=True, merged=True), ProjectStatus.DONE),
        (RepositorySnapshot(kind=RepositoryKind.PR, closed=True), ProjectStatus.BLOCKED),
        (RepositorySnapshot(kind=RepositoryKind.ISSUE), ProjectStatus.IN_PROGRESS),
        (RepositorySnapshot(kind=RepositoryKind.ISSUE, closed=True), ProjectStatus.DONE),
    ],
)
def test_derive_status(snapshot, expected) -> None:
    assert derive_status(snapshot) == expected


@pytest.mark.parametrize("current", [ProjectStatus.DONE, ProjectStatus.SHIPPED, ProjectStatus.PAID])
def test_terminal_status_is_never_regressed(current) -> None:
    reopened = RepositorySnapshot(kind=RepositoryKind.ISSUE, closed=False)

    assert reconcile_status(current, reopened) == current


def test_shipped_is_kept_when_derived_status_is_done() -> None:
    merged = RepositorySnapshot(kind=RepositoryKind.PR, closed=True, merged=True)

    assert reconcile_status(ProjectStatus.SHIPPED, merged) == ProjectStatus.SHIPPED


def test_non_terminal_status_follows_snapshot() -> None:
    closed_pr = RepositorySnapshot(kind=RepositoryKind.PR, closed=True)

    assert reconcile_status(ProjectStatus.IN_PROGRESS, closed_pr) == ProjectStatus.BLOCKED
    assert reconcile_status(ProjectStatus.TODO, RepositorySnapshot(kind=RepositoryKind.REPO)) == ProjectStatus.IN_PROGRESS


def test_blocked_is_kept_until_work_is_done() -> None:
    active_repo = RepositorySnapshot(kind=RepositoryKind.REPO)
    reopened_pr = RepositorySnapshot(kind=RepositoryKind.PR)
    merged_pr = RepositorySnapshot(kind=RepositoryKind.PR, closed=True, merged=True)

    assert reconcile_status(ProjectStatus.BLOCKED, active_repo) == ProjectStatus.BLOCKED
    assert reconcile_status(ProjectStatus.BLOCKED, reopened_pr) == ProjectStatus.BLOCKED
    assert reconcile_status(ProjectStatus.BLOCKED, None) == ProjectStatus.BLOCKED
    assert reconcile_status(ProjectStatus.BLOCKED, merged_pr) == ProjectStatus.DONE


def test_manual_status_rules(make_record, repo_snapshot) -> None:
    unlinked = make_record(repository_url=None)
    linked = make_record(snapshot=repo_snapshot())

    assert is_manual_status_allowed(unlinked, ProjectStatus.IN_PROGRESS)
    assert is_manual_status_allowed(linked, ProjectStatus.SHIPPED)
    assert is_manual_status_allowed(linked, ProjectStatus.BLOCKED)
    assert not is_manual_status_allowed(linked, ProjectStatus.IN_PROGRESS)
    assert not is_manual_status_allowed(linked, ProjectStatus.TODO)


def test_transition_produces_status_sync_event(make_record) -> None:
    record = make_record(
        "Wallet export",
        repository_url="https://github.com/acme/tool/pull/42",
        snapshot=RepositorySnapshot(kind=RepositoryKind.PR, closed=True, merged=True),
        status=ProjectStatus.DONE,
    )

    transition = transition_for(record, ProjectStatus.IN_PROGRESS)
    event = status_sync_event(transition)

    assert transition.reason == "pr_merged"
    assert event.type == EventType.STATUS_SYNCED
    assert event.record_id == record.id
    assert event.data["old_status"] == "in-progress"
    assert event.data["new_status"] == "done"
    assert event.data["merged"] is True
    assert event.data["kind"] == "pr"


def test_no_transition_when_status_unchanged(make_record) -> None:
    record = make_record(status=ProjectStatus.IN_PROGRESS)

    assert transition_for(record, ProjectStatus.IN_PROGRESS) is None
