"""Replayable per-record registry changes."""

from __future__ import annotations

from typing import Callable

from roadmap.models.project import ProjectRecord, Registry

RecordOperation = Callable[[ProjectRecord], bool]
RegistryCheck = Callable[[Registry], bool]


class RegistryDelta:
    """Changes a scan computed, kept so they can be re-applied after a conflict.

    Operations run immediately against the registry the scan is working on and
    are recorded only when they changed the record. ``replay`` applies the same
    operations to a freshly loaded registry; each operation re-checks its own
    preconditions, so replaying onto newer data never duplicates an effect.
    Registry-wide checks (e.g. uniqueness across records) run after a replay.
    """

    def __init__(self) -> None:
        self._operations: list[tuple[str, RecordOperation]] = []
        self._checks: list[RegistryCheck] = []

    def apply(self, record: ProjectRecord, operation: RecordOperation) -> bool:
        changed = bool(operation(record))
        if changed:
            self._operations.append((record.id, operation))
        return changed

    def add_check(self, check: RegistryCheck) -> None:
        self._checks.append(check)

    def replay(self, registry: Registry) -> bool:
        changed = False
        for record_id, operation in self._operations:
            record = registry.find(record_id)
            if record is None:
                continue
            if operation(record):
                changed = True
        for check in self._checks:
            if check(registry):
                changed = True
        return changed

    @property
    def record_ids(self) -> set[str]:
        return {record_id for record_id, _ in self._operations}

    def __len__(self) -> int:
        return len(self._operations)

    def __bool__(self) -> bool:
        return bool(self._operations)
