"""Lifecycle status derived from a record's repository snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from roadmap.models.activity import AuditEvent, EventType
from roadmap.models.project import ProjectRecord, ProjectStatus, RepositoryKind, RepositorySnapshot

TERMINAL_STATUSES = frozenset({ProjectStatus.DONE, ProjectStatus.SHIPPED, ProjectStatus.PAID})
MANUAL_STATUSES = TERMINAL_STATUSES | {ProjectStatus.BLOCKED}

_RANK = {
    ProjectStatus.TODO: 0,
    ProjectStatus.IN_PROGRESS: 1,
    ProjectStatus.BLOCKED: 1,
    ProjectStatus.DONE: 2,
    ProjectStatus.SHIPPED: 3,
    ProjectStatus.PAID: 4,
}


def derive_status(snapshot: Optional[RepositorySnapshot]) -> ProjectStatus:
    if snapshot is None or snapshot.kind is None:
        return ProjectStatus.TODO
    if snapshot.kind == RepositoryKind.REPO:
        return ProjectStatus.DONE if snapshot.archived else ProjectStatus.IN_PROGRESS
    if snapshot.kind == RepositoryKind.PR:
        if snapshot.merged:
            return ProjectStatus.DONE
        return ProjectStatus.BLOCKED if snapshot.closed else ProjectStatus.IN_PROGRESS
    return ProjectStatus.DONE if snapshot.closed else ProjectStatus.IN_PROGRESS


def reconcile_status(current: ProjectStatus, snapshot: Optional[RepositorySnapshot]) -> ProjectStatus:
    """Derived status, except that a hand-settable status only ever moves forward.

    ``blocked`` shares its rank with ``in-progress``, so it is kept until the
    snapshot reports the work as done.
    """
    derived = derive_status(snapshot)
    if current in MANUAL_STATUSES and _RANK[derived] <= _RANK[current]:
        return current
    return derived


def is_manual_status_allowed(record: ProjectRecord, status: ProjectStatus) -> bool:
    if record.snapshot is None or record.snapshot.kind is None:
        return True
    return status in MANUAL_STATUSES


def _reason(snapshot: Optional[RepositorySnapshot]) -> str:
    if snapshot is None or snapshot.kind is None:
        return "no_repository"
    if snapshot.kind == RepositoryKind.PR:
        if snapshot.merged:
            return "pr_merged"
        return "pr_closed" if snapshot.closed else "pr_open"
    if snapshot.kind == RepositoryKind.ISSUE:
        return "issue_closed" if snapshot.closed else "issue_open"
    return "repo_archived" if snapshot.archived else "repo_active"


@dataclass(slots=True)
class StatusTransition:
    record_id: str
    record_title: str
    old_status: ProjectStatus
    new_status: ProjectStatus
    reason: str
    external_state: dict[str, Any] = field(default_factory=dict)


def transition_for(record: ProjectRecord, old_status: ProjectStatus) -> Optional[StatusTransition]:
    """Describe an automated change from ``old_status`` to the record's current status."""
    if record.status == old_status:
        return None
    snapshot = record.snapshot
    external_state: dict[str, Any] = {}
    if snapshot is not None:
        external_state = {
            "kind": snapshot.kind.value if snapshot.kind else None,
            "closed": snapshot.closed,
            "merged": snapshot.merged,
            "archived": snapshot.archived,
        }
    return StatusTransition(
        record_id=record.id,
        record_title=record.title,
        old_status=old_status,
        new_status=record.status,
        reason=_reason(snapshot),
        external_state=external_state,
    )


def status_sync_event(transition: StatusTransition) -> AuditEvent:
    return AuditEvent(
        type=EventType.STATUS_SYNCED,
        record_id=transition.record_id,
        record_title=transition.record_title,
        data={
            "old_status": transition.old_status.value,
            "new_status": transition.new_status.value,
            "reason": transition.reason,
            **transition.external_state,
        },
    )
