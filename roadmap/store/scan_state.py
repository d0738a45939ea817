"""Persistence for scan bookkeeping (cooldowns, processed feed entries)."""

from __future__ import annotations

from roadmap.models.scan_state import MentionScanState, ScanState
from roadmap.store.kv import KeyValueStore

REPO_SCAN_KEY = "roadmap:github-scan"
MENTION_SCAN_KEY = "roadmap:mention-scan"


class ScanStateStore:
    """Last-writer-wins storage; losing an update only shortens a cooldown."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def load_repo_state(self) -> ScanState:
        stored = self._kv.get(REPO_SCAN_KEY)
        return ScanState.model_validate(stored.value) if stored is not None else ScanState()

    def save_repo_state(self, state: ScanState) -> None:
        self._kv.put(REPO_SCAN_KEY, state.model_dump(mode="json"))

    def load_mention_state(self) -> MentionScanState:
        stored = self._kv.get(MENTION_SCAN_KEY)
        return MentionScanState.model_validate(stored.value) if stored is not None else MentionScanState()

    def save_mention_state(self, state: MentionScanState) -> None:
        self._kv.put(MENTION_SCAN_KEY, state.model_dump(mode="json"))
