"""Base HTTP client with common functionality"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from roadmap.config.settings import settings
from roadmap.crawlers.contracts import FetchResult, FetchState
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra


class BaseServiceClient:
    """
    Async JSON client for the read-only external services

    Subclasses share one ``httpx.AsyncClient`` per instance and report every
    outcome as a ``FetchResult`` so callers never handle transport errors.
    """

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
        user_agent: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        base_url: str = "",
    ) -> None:
        self.logger = logging.getLogger(self.__class__.__module__)
        default_headers = {"User-Agent": user_agent or settings.USER_AGENT}
        default_headers.update(headers or {})
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=default_headers,
            timeout=timeout_seconds or settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, url: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        """Single GET returning decoded JSON"""
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            self.logger.warning(
                "Service request errored",
                extra=sanitize_log_extra(url=url, params=params, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, error=sanitize_for_log(str(exc)))

        if response.status_code == 404:
            return FetchResult(state=FetchState.NOT_FOUND, status_code=404)
        if response.status_code >= 400:
            self.logger.warning(
                "Service request failed",
                extra=sanitize_log_extra(url=url, params=params, status_code=response.status_code),
            )
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error=f"invalid JSON: {exc}")
        if data in (None, [], {}):
            return FetchResult(state=FetchState.EMPTY, data=data, status_code=response.status_code)
        return FetchResult(state=FetchState.OK, data=data, status_code=response.status_code)
