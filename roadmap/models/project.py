"""Project record and registry models"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from roadmap.utils.helpers import utc_now


class ProjectStatus(str, Enum):
    """Lifecycle status of a record."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    BLOCKED = "blocked"
    SHIPPED = "shipped"
    PAID = "paid"


class RepositoryKind(str, Enum):
    REPO = "repo"
    ISSUE = "issue"
    PR = "pr"


class WebsiteSource(str, Enum):
    HOMEPAGE = "homepage"
    DESCRIPTION = "description"
    README = "readme"
    DELIVERABLE = "deliverable"
    MESSAGE = "message"


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Account(_Model):
    """Stable account identifier plus display name."""

    account_id: str
    display_name: str


class Leader(_Model):
    account: Account
    assigned_at: datetime
    last_active_at: datetime


class WorkClaim(_Model):
    account: Account
    claimed_at: datetime


class Rating(_Model):
    account: Account
    score: int = Field(ge=1, le=5)
    review: Optional[str] = None
    rated_at: datetime


class Reputation(_Model):
    average: float = 0.0
    count: int = 0


class Goal(_Model):
    id: str
    title: str
    completed: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None


class Deliverable(_Model):
    id: str
    url: str
    title: str
    added_by: Optional[Account] = None
    added_by_name: Optional[str] = None
    added_at: datetime


class Website(_Model):
    url: str
    source: WebsiteSource
    discovered_at: datetime


class RepositorySnapshot(_Model):
    """Last-fetched external state of the referenced repo, issue or PR."""

    kind: Optional[RepositoryKind] = None
    number: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    closed: bool = False
    archived: bool = False
    merged: bool = False
    labels: list[str] = Field(default_factory=list)
    stars: Optional[int] = None
    homepage: Optional[str] = None
    owner_login: Optional[str] = None
    fetched_at: Optional[datetime] = None
    not_found_count: int = 0


class ProjectRecord(_Model):
    """One tracked project entry in the registry."""

    id: str
    title: str
    description: str = ""
    repository_url: Optional[str] = None
    snapshot: Optional[RepositorySnapshot] = None
    status: ProjectStatus = ProjectStatus.TODO
    founder: Account
    leader: Optional[Leader] = None
    contributors: list[Account] = Field(default_factory=list)
    claimed_by: Optional[WorkClaim] = None
    ratings: list[Rating] = Field(default_factory=list)
    reputation: Reputation = Field(default_factory=Reputation)
    goals: list[Goal] = Field(default_factory=list)
    goal_history: list[Goal] = Field(default_factory=list)
    deliverables: list[Deliverable] = Field(default_factory=list)
    mentions: int = 0
    website: Optional[Website] = None
    search_terms: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touch(self, at: datetime | None = None) -> None:
        self.updated_at = at or utc_now()

    def has_contributor(self, account_id: str) -> bool:
        return any(contributor.account_id == account_id for contributor in self.contributors)

    def add_contributor(self, account: Account | None) -> bool:
        """Append ``account`` unless already present. Returns True when added."""
        if account is None or not account.account_id or self.has_contributor(account.account_id):
            return False
        self.contributors.append(Account(account_id=account.account_id, display_name=account.display_name))
        return True

    def has_deliverable_url(self, url: str) -> bool:
        return any(deliverable.url == url for deliverable in self.deliverables)

    @property
    def is_archived(self) -> bool:
        return bool(self.snapshot and self.snapshot.archived)


class Registry(_Model):
    """All records plus the optimistic-concurrency write version."""

    schema_version: int = 0
    write_version: int = 0
    items: list[ProjectRecord] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    def find(self, record_id: str) -> ProjectRecord | None:
        for record in self.items:
            if record.id == record_id:
                return record
        return None
