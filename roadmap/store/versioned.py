"""Registry blob access with optimistic concurrency."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from roadmap.config.settings import settings
from roadmap.errors import ConcurrencyConflict
from roadmap.models.project import Registry
from roadmap.store.delta import RegistryDelta
from roadmap.store.kv import KeyValueStore
from roadmap.store.migrations import migrate_registry
from roadmap.utils.helpers import utc_now
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

REGISTRY_KEY = "roadmap:items"


class SaveOutcome(str, Enum):
    NOOP = "noop"
    APPLIED = "applied"
    RETRIED_APPLIED = "retried_applied"
    DROPPED = "dropped"


@dataclass(slots=True)
class SaveResult:
    outcome: SaveOutcome
    attempts: int = 0
    registry: Registry | None = None

    @property
    def persisted(self) -> bool:
        return self.outcome in (SaveOutcome.APPLIED, SaveOutcome.RETRIED_APPLIED)

    @property
    def dropped(self) -> bool:
        return self.outcome == SaveOutcome.DROPPED


class VersionedStore:
    """Load/save the registry; ``save`` fails if someone else wrote first.

    Interactive callers use ``save`` and surface ``ConcurrencyConflict``.
    Background scans use ``save_with_retry``, which reloads and replays the
    scan's delta on conflict and drops the cycle after the last attempt.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        key: str = REGISTRY_KEY,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._kv = kv
        self._key = key
        self._max_retries = max(max_retries or settings.SAVE_MAX_RETRIES, 1)
        self._backoff_base = backoff_base_seconds if backoff_base_seconds is not None else settings.SAVE_BACKOFF_BASE_SECONDS
        self._backoff_max = backoff_max_seconds if backoff_max_seconds is not None else settings.SAVE_BACKOFF_MAX_SECONDS
        self._sleep = sleeper

    def load(self) -> Registry:
        stored = self._kv.get(self._key)
        registry = Registry.model_validate(migrate_registry(stored.value if stored is not None else None))
        registry.write_version = stored.version if stored is not None else 0
        return registry

    def save(self, registry: Registry) -> Registry:
        registry.updated_at = utc_now()
        payload = registry.model_dump(mode="json", exclude={"write_version"})
        registry.write_version = self._kv.put(self._key, payload, expected_version=registry.write_version)
        return registry

    async def save_with_retry(self, registry: Registry, delta: RegistryDelta) -> SaveResult:
        if not delta:
            return SaveResult(outcome=SaveOutcome.NOOP, registry=registry)

        target = registry
        for attempt in range(1, self._max_retries + 1):
            try:
                self.save(target)
                outcome = SaveOutcome.APPLIED if attempt == 1 else SaveOutcome.RETRIED_APPLIED
                return SaveResult(outcome=outcome, attempts=attempt, registry=target)
            except ConcurrencyConflict as exc:
                logger.warning(
                    "Registry write conflict",
                    extra=sanitize_log_extra(
                        attempt=attempt,
                        max_retries=self._max_retries,
                        expected_version=exc.expected_version,
                        actual_version=exc.actual_version,
                    ),
                )
                if attempt == self._max_retries:
                    break
                await self._sleep(self.backoff_seconds(attempt))
                target = self.load()
                delta.replay(target)

        logger.warning(
            "Dropping registry changes after exhausting retries",
            extra=sanitize_log_extra(attempts=self._max_retries, operations=len(delta)),
        )
        return SaveResult(outcome=SaveOutcome.DROPPED, attempts=self._max_retries)

    def backoff_seconds(self, attempt: int) -> float:
        """Base delay doubling per attempt, capped."""
        return min(self._backoff_base * (2 ** max(attempt - 1, 0)), self._backoff_max)
