"""Per-repository scan bookkeeping models"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ScanKind(str, Enum):
    CONTRIBUTORS = "contributors"
    EVENTS = "events"
    WEBSITE = "website"


class ScanMark(BaseModel):
    """Last attempt and consecutive failures for one scan kind."""

    model_config = ConfigDict(extra="ignore")

    last_scan_at: Optional[datetime] = None
    failures: int = 0


class RepoScanState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contributors: ScanMark = Field(default_factory=ScanMark)
    events: ScanMark = Field(default_factory=ScanMark)
    website: ScanMark = Field(default_factory=ScanMark)

    def mark(self, kind: ScanKind) -> ScanMark:
        return getattr(self, kind.value)


class ScanState(BaseModel):
    """Scan state for every repository, keyed by ``owner/repo``."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    repos: dict[str, RepoScanState] = Field(default_factory=dict)

    def repo(self, repo_path: str) -> RepoScanState:
        return self.repos.setdefault(repo_path, RepoScanState())

    def record_success(self, repo_path: str, kind: ScanKind, at: datetime) -> None:
        mark = self.repo(repo_path).mark(kind)
        mark.last_scan_at = at
        mark.failures = 0

    def record_failure(self, repo_path: str, kind: ScanKind, at: datetime) -> None:
        mark = self.repo(repo_path).mark(kind)
        mark.last_scan_at = at
        mark.failures += 1

    def reset(self, repo_path: str, kind: ScanKind) -> None:
        """Forget the last attempt so the next scan runs immediately."""
        if repo_path in self.repos:
            self.repos[repo_path].mark(kind).last_scan_at = None


class MentionScanState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    last_scan_at: Optional[datetime] = None
    processed_ids: list[str] = Field(default_factory=list)
