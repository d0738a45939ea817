"""In-memory mutations of a single project record.

Every function validates its input before touching the record and raises a
``RoadmapError`` subclass instead of applying a partial change. Persisting
the result is the caller's job (see ``ProjectService``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.github.snapshots import REPO_URL_PATTERN, RepositoryRef, parse_repository_url
from roadmap.errors import ClaimConflict, LeadershipClaimRejected, PermissionDenied, ValidationFailed
from roadmap.models.project import (
    Account,
    Deliverable,
    Goal,
    Leader,
    ProjectRecord,
    ProjectStatus,
    Rating,
    RepositoryKind,
    RepositorySnapshot,
    WorkClaim,
)
from roadmap.services.status import MANUAL_STATUSES, derive_status, is_manual_status_allowed
from roadmap.utils.helpers import generate_id, is_valid_url, utc_now

MAX_TITLE_LENGTH = 200
MAX_REVIEW_LENGTH = 280
MAX_GOAL_TITLE_LENGTH = 140


def validate_title(title: Optional[str]) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationFailed("Title is required")
    if len(cleaned) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return cleaned


def validate_repository_url(url: Optional[str], *, require_repo: bool = False) -> RepositoryRef:
    cleaned = (url or "").strip()
    if not cleaned:
        raise ValidationFailed("repository_url is required. Provide a link to an open source GitHub repo.")
    if not REPO_URL_PATTERN.match(cleaned):
        raise ValidationFailed("repository_url must be a valid GitHub URL.")
    ref = parse_repository_url(cleaned)
    if ref is None:
        raise ValidationFailed("repository_url must be a valid GitHub URL.")
    if require_repo and ref.kind != RepositoryKind.REPO:
        raise ValidationFailed("repository_url must point to a GitHub repo (e.g. github.com/org/repo), not an issue or PR.")
    return ref


def check_same_repository_kind(record: ProjectRecord, new_ref: RepositoryRef) -> None:
    """A record's URL may be edited but must keep pointing at the same kind of resource."""
    current = parse_repository_url(record.repository_url)
    current_kind = current.kind if current is not None else (record.snapshot.kind if record.snapshot else None)
    if current_kind is not None and current_kind != new_ref.kind:
        raise ValidationFailed(
            f"repository_url must stay a GitHub {current_kind.value} link, got a {new_ref.kind.value} link.",
            current_kind=current_kind.value,
            new_kind=new_ref.kind.value,
        )


def parse_status(value: ProjectStatus | str) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in ProjectStatus)
        raise ValidationFailed(f"Invalid status. Must be one of: {allowed}", status=str(value)) from None


def check_manual_status(record: ProjectRecord, status: ProjectStatus) -> None:
    if not is_manual_status_allowed(record, status):
        allowed = ", ".join(sorted(item.value for item in MANUAL_STATUSES))
        raise ValidationFailed(
            f"Status is derived from the repository; only {allowed} can be set by hand",
            status=status.value,
        )


def record_activity(record: ProjectRecord, actor: Account, now: datetime) -> None:
    """Bookkeeping shared by every mutating action."""
    record.add_contributor(actor)
    if record.leader is not None and record.leader.account.account_id == actor.account_id:
        record.leader.last_active_at = now
    record.touch(now)


def new_record(
    actor: Account,
    *,
    title: str,
    repository_url: str,
    snapshot: RepositorySnapshot,
    description: str = "",
    status: ProjectStatus | str | None = None,
    now: Optional[datetime] = None,
) -> ProjectRecord:
    at = now or utc_now()
    record = ProjectRecord(
        id=generate_id("r"),
        title=validate_title(title),
        description=(description or "").strip(),
        repository_url=repository_url.strip(),
        snapshot=snapshot,
        founder=actor,
        leader=Leader(account=actor, assigned_at=at, last_active_at=at),
        contributors=[actor],
        created_at=at,
        updated_at=at,
    )
    record.status = derive_status(snapshot)
    if status is not None:
        requested = parse_status(status)
        if requested != record.status:
            check_manual_status(record, requested)
            record.status = requested
    return record


def apply_field_updates(
    record: ProjectRecord,
    actor: Account,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: ProjectStatus | str | None = None,
    search_terms: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    """Apply plain field edits. Returns the status change, if any."""
    at = now or utc_now()
    requested_status = parse_status(status) if status is not None else None
    if requested_status is not None and requested_status != record.status:
        check_manual_status(record, requested_status)
    new_title = validate_title(title) if title is not None else None

    if new_title is not None:
        record.title = new_title
    if description is not None:
        record.description = description.strip()
    if search_terms is not None:
        record.search_terms = [term.strip() for term in search_terms if term and term.strip()]

    change = None
    if requested_status is not None and requested_status != record.status:
        change = {"old_status": record.status.value, "new_status": requested_status.value}
        record.status = requested_status

    record_activity(record, actor, at)
    return change


def claim(record: ProjectRecord, actor: Account, *, now: Optional[datetime] = None) -> None:
    at = now or utc_now()
    if record.claimed_by is not None:
        raise ClaimConflict("Item is already claimed", claimed_by=record.claimed_by.account.account_id)
    record.claimed_by = WorkClaim(account=actor, claimed_at=at)
    if record.status == ProjectStatus.TODO:
        record.status = ProjectStatus.IN_PROGRESS
    record_activity(record, actor, at)


def unclaim(record: ProjectRecord, actor: Account, *, now: Optional[datetime] = None) -> None:
    if record.claimed_by is None:
        raise ValidationFailed("Item is not claimed")
    if record.claimed_by.account.account_id != actor.account_id:
        raise PermissionDenied("Only the claimant can unclaim")
    record.claimed_by = None
    record_activity(record, actor, now or utc_now())


def days_inactive(leader: Leader, now: datetime) -> int:
    return max((now - leader.last_active_at).days, 0)


def claim_leadership(
    record: ProjectRecord,
    actor: Account,
    *,
    now: Optional[datetime] = None,
    inactivity_days: Optional[int] = None,
) -> dict[str, Any]:
    """Take over an unled record, or one whose leader has gone quiet."""
    at = now or utc_now()
    required = inactivity_days if inactivity_days is not None else settings.LEADER_INACTIVITY_DAYS
    previous = record.leader
    if previous is not None:
        if previous.account.account_id == actor.account_id:
            raise ClaimConflict("You are already the leader")
        elapsed = days_inactive(previous, at)
        if elapsed < required:
            raise LeadershipClaimRejected(elapsed, required)

    record.leader = Leader(account=actor, assigned_at=at, last_active_at=at)
    record_activity(record, actor, at)
    return {
        "previous_leader": previous.account.model_dump(mode="json") if previous else None,
        "days_inactive": days_inactive(previous, at) if previous else None,
    }


def require_leader(record: ProjectRecord, actor: Account, action: str) -> None:
    if record.leader is None or record.leader.account.account_id != actor.account_id:
        raise PermissionDenied(f"Only the current leader can {action}")


def transfer_leadership(
    record: ProjectRecord,
    actor: Account,
    to_account: Account,
    *,
    now: Optional[datetime] = None,
) -> None:
    at = now or utc_now()
    require_leader(record, actor, "transfer leadership")
    if to_account.account_id == actor.account_id:
        raise ValidationFailed("Leadership is already held by this account")
    record_activity(record, actor, at)
    record.leader = Leader(account=to_account, assigned_at=at, last_active_at=at)
    record.add_contributor(to_account)


def add_deliverable(
    record: ProjectRecord,
    actor: Account,
    *,
    url: str,
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Deliverable:
    at = now or utc_now()
    cleaned = (url or "").strip()
    if not cleaned:
        raise ValidationFailed("deliverable url is required")
    if not is_valid_url(cleaned):
        raise ValidationFailed("deliverable url must be a valid http(s) URL")
    deliverable = Deliverable(
        id=generate_id("d"),
        url=cleaned,
        title=(title or cleaned).strip(),
        added_by=actor,
        added_by_name=actor.display_name,
        added_at=at,
    )
    record.deliverables.append(deliverable)
    record_activity(record, actor, at)
    return deliverable


def recompute_reputation(record: ProjectRecord) -> None:
    scores = [rating.score for rating in record.ratings]
    record.reputation.count = len(scores)
    record.reputation.average = round(sum(scores) / len(scores), 1) if scores else 0.0


def rate(
    record: ProjectRecord,
    actor: Account,
    *,
    score: int,
    review: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Rating:
    at = now or utc_now()
    if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
        raise ValidationFailed("score must be an integer from 1 to 5", score=score)
    cleaned_review = (review or "").strip() or None
    if cleaned_review is not None and len(cleaned_review) > MAX_REVIEW_LENGTH:
        raise ValidationFailed(f"review must be at most {MAX_REVIEW_LENGTH} characters")

    rating = Rating(account=actor, score=score, review=cleaned_review, rated_at=at)
    for index, existing in enumerate(record.ratings):
        if existing.account.account_id == actor.account_id:
            record.ratings[index] = rating
            break
    else:
        record.ratings.append(rating)
    recompute_reputation(record)
    record_activity(record, actor, at)
    return rating


def add_goal(record: ProjectRecord, actor: Account, *, title: str, now: Optional[datetime] = None) -> Goal:
    at = now or utc_now()
    require_leader(record, actor, "set goals")
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationFailed("Goal title is required")
    if len(cleaned) > MAX_GOAL_TITLE_LENGTH:
        raise ValidationFailed(f"Goal title must be at most {MAX_GOAL_TITLE_LENGTH} characters")

    record.goal_history.extend(record.goals)
    goal = Goal(id=generate_id("g"), title=cleaned, created_at=at)
    record.goals = [goal]
    record_activity(record, actor, at)
    return goal


def complete_goal(
    record: ProjectRecord,
    actor: Account,
    *,
    goal_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Goal:
    at = now or utc_now()
    require_leader(record, actor, "complete goals")
    active = [goal for goal in record.goals if not goal.completed and (goal_id is None or goal.id == goal_id)]
    if not active:
        raise ValidationFailed("No active goal to complete", goal_id=goal_id)
    goal = active[0]
    goal.completed = True
    goal.completed_at = at
    record_activity(record, actor, at)
    return goal


def check_can_delete(record: ProjectRecord, actor: Account) -> None:
    is_founder = record.founder.account_id == actor.account_id
    is_leader = record.leader is not None and record.leader.account.account_id == actor.account_id
    if not (is_founder or is_leader):
        raise PermissionDenied("Only the founder or the current leader can delete this item")


def reorder_items(items: list[ProjectRecord], ordered_ids: Iterable[str]) -> list[ProjectRecord]:
    """Listed ids first in the given order; the rest keep their relative order."""
    remaining = {record.id: record for record in items}
    reordered: list[ProjectRecord] = []
    for record_id in ordered_ids:
        record = remaining.pop(record_id, None)
        if record is not None:
            reordered.append(record)
    reordered.extend(record for record in items if record.id in remaining)
    return reordered
