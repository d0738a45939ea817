"""GitHub REST client returning typed fetch contracts."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from roadmap.config.settings import settings
from roadmap.crawlers.base import BaseServiceClient
from roadmap.crawlers.contracts import (
    ContentContract,
    ContributorContract,
    FetchResult,
    FetchState,
    IssueContract,
    PullContract,
    PullListContract,
    RepoContract,
)
from roadmap.utils.redaction import sanitize_for_log, sanitize_log_extra

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/vnd.github+json"
RAW_ACCEPT = "application/vnd.github.raw+json"


class GitHubClient(BaseServiceClient):
    """Read-only GitHub API access with rate-limit aware retries.

    404 maps to ``NOT_FOUND``, 304 to ``UNCHANGED``, an empty list to
    ``EMPTY``; any other failure after the last retry is ``FAILED``.
    """

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        rate_limit_buffer_seconds: float = 1.0,
        sleeper: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        resolved_token = token if token is not None else settings.GITHUB_TOKEN
        headers = {"Accept": JSON_ACCEPT}
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"
        super().__init__(
            transport=transport,
            timeout_seconds=timeout_seconds,
            headers=headers,
            base_url=base_url or settings.GITHUB_API_BASE_URL,
        )
        self._max_retries = max(max_retries or settings.HTTP_MAX_RETRIES, 1)
        self._backoff_base = backoff_base_seconds if backoff_base_seconds is not None else settings.HTTP_BACKOFF_BASE_SECONDS
        self._backoff_max = backoff_max_seconds if backoff_max_seconds is not None else settings.HTTP_BACKOFF_MAX_SECONDS
        self._rate_limit_buffer = rate_limit_buffer_seconds
        self._sleeper = sleeper

    async def get_repo(self, owner: str, repo: str, *, etag: Optional[str] = None) -> RepoContract:
        return await self._request(f"/repos/{owner}/{repo}", etag=etag)

    async def get_pull(self, owner: str, repo: str, number: int) -> PullContract:
        return await self._request(f"/repos/{owner}/{repo}/pulls/{number}")

    async def get_issue(self, owner: str, repo: str, number: int) -> IssueContract:
        return await self._request(f"/repos/{owner}/{repo}/issues/{number}")

    async def list_contributors(self, owner: str, repo: str, *, per_page: Optional[int] = None) -> ContributorContract:
        params = {"per_page": per_page or settings.CONTRIBUTORS_PER_PAGE}
        return await self._request(f"/repos/{owner}/{repo}/contributors", params=params)

    async def list_closed_pulls(self, owner: str, repo: str, *, per_page: Optional[int] = None) -> PullListContract:
        params = {
            "state": "closed",
            "sort": "updated",
            "direction": "desc",
            "per_page": per_page or settings.CLOSED_PULLS_PER_PAGE,
        }
        return await self._request(f"/repos/{owner}/{repo}/pulls", params=params)

    async def get_readme(self, owner: str, repo: str) -> ContentContract:
        return await self._request(f"/repos/{owner}/{repo}/readme", accept=RAW_ACCEPT, raw=True)

    async def _request(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        etag: Optional[str] = None,
        accept: Optional[str] = None,
        raw: bool = False,
    ) -> FetchResult[Any]:
        headers: dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if accept:
            headers["Accept"] = accept

        last_status: Optional[int] = None
        last_error: Optional[str] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client.get(path, params=params, headers=headers)
            except httpx.HTTPError as exc:
                last_error = str(exc)
                last_status = None
                if attempt < self._max_retries:
                    await self._sleep(self._backoff_seconds(attempt))
                continue

            status = response.status_code
            last_status = status
            response_etag = response.headers.get("etag")

            if status == 304:
                return FetchResult(state=FetchState.UNCHANGED, etag=response_etag or etag, status_code=status)
            if status == 404:
                return FetchResult(state=FetchState.NOT_FOUND, status_code=status, error="not found")

            if self._is_rate_limited(response):
                last_error = f"rate limited (HTTP {status})"
                if attempt < self._max_retries:
                    await self._sleep(self._rate_limit_wait_seconds(response, attempt))
                continue

            if status >= 500:
                last_error = f"HTTP {status}"
                if attempt < self._max_retries:
                    await self._sleep(self._backoff_seconds(attempt))
                continue

            if status >= 400:
                last_error = f"HTTP {status}"
                break

            if raw:
                text = response.text
                state = FetchState.OK if text.strip() else FetchState.EMPTY
                return FetchResult(state=state, data=text, etag=response_etag, status_code=status)

            try:
                data = response.json()
            except ValueError as exc:
                last_error = f"invalid JSON: {exc}"
                break
            state = FetchState.EMPTY if data == [] else FetchState.OK
            return FetchResult(state=state, data=data, etag=response_etag, status_code=status)

        sanitized_error = sanitize_for_log(last_error or "unknown error", key="error")
        logger.warning(
            "GitHub request failed",
            extra=sanitize_log_extra(path=path, params=params, status_code=last_status, error=sanitized_error),
        )
        return FetchResult(state=FetchState.FAILED, status_code=last_status, error=sanitized_error)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        headers = response.headers
        if "retry-after" in headers:
            return True
        remaining = headers.get("x-ratelimit-remaining")
        if remaining is not None:
            return remaining.strip() == "0"
        return "x-ratelimit-reset" in headers

    def _rate_limit_wait_seconds(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(max(float(retry_after), 0.0) + self._rate_limit_buffer, self._backoff_max)
            except ValueError:
                pass
        reset_at = response.headers.get("x-ratelimit-reset")
        if reset_at is not None:
            try:
                wait = float(reset_at) - time.time()
                return min(max(wait, 0.0) + self._rate_limit_buffer, self._backoff_max)
            except ValueError:
                pass
        return self._backoff_seconds(attempt)

    def _backoff_seconds(self, attempt: int) -> float:
        return min(self._backoff_base * (2 ** max(attempt - 1, 0)), self._backoff_max)

    async def _sleep(self, seconds: float) -> None:
        sleeper = self._sleeper or asyncio.sleep
        await sleeper(seconds)
