"""Identity verification client with key-value backed caching."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from roadmap.config.settings import settings
from roadmap.crawlers.base import BaseServiceClient
from roadmap.models.project import Account
from roadmap.store.kv import KeyValueStore
from roadmap.utils.redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

AUTH_SCHEME = "AIBTC"
CACHE_KEY_PREFIX = "roadmap:agent-cache:"


def parse_credential(authorization: Optional[str]) -> Optional[str]:
    """Extract the account identifier from an ``AIBTC <address>`` header."""
    if not authorization or not authorization.startswith(f"{AUTH_SCHEME} "):
        return None
    address = authorization[len(AUTH_SCHEME) + 1:].strip()
    return address or None


class IdentityClient(BaseServiceClient):
    """Looks up registered accounts; positive results are cached for a bounded time."""

    def __init__(
        self,
        *,
        kv: Optional[KeyValueStore] = None,
        api_url: Optional[str] = None,
        cache_ttl_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(transport=transport, timeout_seconds=timeout_seconds)
        self._kv = kv
        self._api_url = (api_url or settings.IDENTITY_API_URL).rstrip("/")
        self._cache_ttl = cache_ttl_seconds or settings.IDENTITY_CACHE_TTL_SECONDS

    async def verify(self, authorization: Optional[str]) -> Optional[Account]:
        account_id = parse_credential(authorization)
        if account_id is None:
            return None
        return await self.lookup(account_id)

    async def lookup(self, account_id: str) -> Optional[Account]:
        cache_key = f"{CACHE_KEY_PREFIX}{account_id}"
        if self._kv is not None:
            cached = self._kv.get(cache_key)
            if cached is not None:
                return Account.model_validate(cached.value)

        response = await self._get_json(f"{self._api_url}/{quote(account_id, safe='')}")
        if not response.is_ok or not isinstance(response.data, dict):
            return None
        if not response.data.get("found"):
            return None

        agent = response.data.get("agent") or {}
        resolved_id = str(agent.get("btcAddress") or account_id)
        account = Account(
            account_id=resolved_id,
            display_name=str(agent.get("displayName") or resolved_id[:12]),
        )
        if self._kv is not None:
            self._kv.put(cache_key, account.model_dump(mode="json"), ttl_seconds=self._cache_ttl)
        logger.debug("Identity verified", extra=sanitize_log_extra(account_id=resolved_id))
        return account
