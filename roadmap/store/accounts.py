"""GitHub login to account mapping."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from roadmap.config.settings import settings
from roadmap.models.project import Account
from roadmap.store.kv import KeyValueStore
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

GITHUB_MAP_KEY = "roadmap:github-map"


class AccountDirectory:
    """Resolves GitHub logins to registry accounts.

    The mapping lives in the key-value store; entries from ``seed`` are used
    when the stored mapping has none. Display names come from the identity
    service and fall back to the GitHub login when it is unavailable.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        identity_client: Any = None,
        *,
        seed: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._kv = kv
        self._identity = identity_client
        self._seed = {login.lower(): account_id for login, account_id in (seed if seed is not None else settings.GITHUB_ACCOUNT_SEED).items()}
        self._mapping: Optional[dict[str, str]] = None

    def mapping(self) -> dict[str, str]:
        if self._mapping is None:
            stored = self._kv.get(GITHUB_MAP_KEY)
            stored_map = stored.value if stored is not None and isinstance(stored.value, dict) else {}
            merged = dict(self._seed)
            merged.update({str(login).lower(): str(account_id) for login, account_id in stored_map.items()})
            self._mapping = merged
        return self._mapping

    def account_id_for(self, login: str) -> Optional[str]:
        return self.mapping().get(login.lower())

    def link(self, login: str, account_id: str) -> None:
        """Persist a login mapping."""
        stored = self._kv.get(GITHUB_MAP_KEY)
        current = dict(stored.value) if stored is not None and isinstance(stored.value, dict) else {}
        current[login.lower()] = account_id
        self._kv.put(GITHUB_MAP_KEY, current)
        self.mapping()[login.lower()] = account_id

    async def resolve(self, login: Optional[str]) -> Optional[Account]:
        if not login:
            return None
        account_id = self.account_id_for(login)
        if account_id is None:
            return None

        if self._identity is not None:
            account = await self._identity.lookup(account_id)
            if account is not None:
                return account
            logger.info(
                "Identity lookup unavailable, using GitHub login",
                extra=sanitize_log_extra(github_login=login, account_id=account_id),
            )
        return Account(account_id=account_id, display_name=login)
