"""Error taxonomy for registry operations."""

from __future__ import annotations


class RoadmapError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 400

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ConcurrencyConflict(RoadmapError):
    """The registry changed since it was loaded; retry the request."""

    status_code = 409

    def __init__(self, expected_version: int, actual_version: int | None = None) -> None:
        super().__init__(
            "Concurrent write detected",
            expected_version=expected_version,
            actual_version=actual_version,
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class RecordNotFound(RoadmapError):
    status_code = 404

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Item not found: {record_id}", record_id=record_id)
        self.record_id = record_id


class ValidationFailed(RoadmapError):
    status_code = 400


class PermissionDenied(RoadmapError):
    status_code = 403


class ClaimConflict(RoadmapError):
    status_code = 409


class LeadershipClaimRejected(RoadmapError):
    status_code = 409

    def __init__(self, days_inactive: int, required_days: int) -> None:
        super().__init__(
            f"Leader was active {days_inactive} days ago; leadership can be claimed after {required_days} days of inactivity",
            days_inactive=days_inactive,
            required_days=required_days,
        )
        self.days_inactive = days_inactive
        self.required_days = required_days
