"""Registry and storage models"""

from roadmap.models.activity import ActivityEntry, AuditEvent, EventType
from roadmap.models.kv_entry import KeyValueEntry
from roadmap.models.project import (
    Account,
    Deliverable,
    Goal,
    Leader,
    ProjectRecord,
    ProjectStatus,
    Rating,
    Registry,
    RepositoryKind,
    RepositorySnapshot,
    Reputation,
    Website,
    WebsiteSource,
    WorkClaim,
)
from roadmap.models.scan_state import MentionScanState, RepoScanState, ScanKind, ScanMark, ScanState

__all__ = [
    "Account",
    "ActivityEntry",
    "AuditEvent",
    "Deliverable",
    "EventType",
    "Goal",
    "KeyValueEntry",
    "Leader",
    "MentionScanState",
    "ProjectRecord",
    "ProjectStatus",
    "Rating",
    "Registry",
    "RepoScanState",
    "RepositoryKind",
    "RepositorySnapshot",
    "Reputation",
    "ScanKind",
    "ScanMark",
    "ScanState",
    "Website",
    "WebsiteSource",
    "WorkClaim",
]
