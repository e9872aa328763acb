"""GitHub REST API client for the starred listing."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

import httpx
from pydantic import ValidationError

from starsync.adapters.github.models import STARRED_LIST, FetchStarredResult, StarredItem
from starsync.adapters.github.pages import StarredPages
from starsync.core.etag import format_if_none_match, sanitize_etag
from starsync.core.time_utils import utc_now

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Self

    from starsync.config import GitHubConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAR_MEDIA_TYPE = "application/vnd.github.star+json"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
API_VERSION = "2022-11-28"

MIN_PER_PAGE = 1
MAX_PER_PAGE = 100

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5  # seconds
DEFAULT_MAX_DELAY = 10.0  # seconds
DEFAULT_JITTER = 0.1


class GitHubClientError(Exception):
    """Non-retryable GitHub failure; carries the request context."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        route: str | None = None,
        rate_limit_remaining: int | None = None,
        rate_limit_reset: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.route = route
        self.rate_limit_remaining = rate_limit_remaining
        self.rate_limit_reset = rate_limit_reset


class GitHubRetryableError(GitHubClientError):
    """Server-side failure worth another attempt."""


def clamp_per_page(value: int | None) -> int:
    try:
        size = int(value) if value is not None else 50
    except (TypeError, ValueError):
        size = 50
    return max(MIN_PER_PAGE, min(MAX_PER_PAGE, size))


def _is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, GitHubRetryableError):
        return True
    return isinstance(exc, httpx.TransportError)


def _calculate_delay(attempt: int, base_delay: float, max_delay: float, jitter: float) -> float:
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + delay * jitter * random.random()


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    operation_name: str = "operation",
) -> T:
    """Run ``func`` and retry transient failures with exponential backoff.

    Non-retryable errors propagate immediately. When retries run out the last
    transient error propagates unchanged so callers can still classify it.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not _is_retryable_error(e):
                raise

            if attempt == max_retries:
                logger.error(
                    "github_retry_exhausted",
                    extra={"operation": operation_name, "attempts": attempt + 1, "error": str(e)},
                )
                raise

            delay = _calculate_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                "github_retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                    "delay_seconds": round(delay, 2),
                    "error": str(e),
                },
            )
            await asyncio.sleep(delay)

    msg = f"{operation_name} failed"
    raise GitHubClientError(msg)


def _int_header(response: httpx.Response, name: str) -> int | None:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _reset_header(response: httpx.Response) -> datetime | None:
    epoch = _int_header(response, "x-ratelimit-reset")
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=UTC)


def _is_rate_limited(response: httpx.Response, remaining: int | None) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if "retry-after" in response.headers or remaining == 0:
        return True
    return "rate limit" in response.text.lower()


def _retry_after_seconds(
    response: httpx.Response, remaining: int | None, reset: datetime | None
) -> int | None:
    retry_after = _int_header(response, "retry-after")
    if retry_after is not None:
        return max(0, retry_after)
    if remaining == 0 and reset is not None:
        return max(0, int((reset - utc_now()).total_seconds()))
    return None


class GitHubClient:
    """Async client for the starred-repository endpoints.

    Use as an async context manager; the underlying ``httpx.AsyncClient`` lives
    for the duration of the block.
    """

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str = "",
        timeout: float = 15.0,
        *,
        user_agent: str = "starsync",
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls, cfg: GitHubConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> GitHubClient:
        return cls(
            api_url=cfg.api_url,
            token=cfg.token,
            timeout=cfg.request_timeout_sec,
            user_agent=cfg.user_agent,
            max_retries=cfg.max_retries,
            retry_base_delay=cfg.retry_base_delay_ms / 1000.0,
            transport=transport,
        )

    async def __aenter__(self) -> Self:
        headers = {
            "Accept": STAR_MEDIA_TYPE,
            "User-Agent": self.user_agent,
            "X-GitHub-Api-Version": API_VERSION,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Client not initialized. Use async context manager."
            raise GitHubClientError(msg)
        return self._client

    async def _with_retry(self, func: Callable[[], Awaitable[T]], operation_name: str) -> T:
        return await retry_with_backoff(
            func,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            operation_name=operation_name,
        )

    async def fetch_starred_page(
        self,
        username: str,
        *,
        page: int = 1,
        per_page: int = 50,
        etag: str | None = None,
    ) -> FetchStarredResult:
        """Fetch one page of the user's stars, newest first.

        A 304 answer yields ``not_modified`` with no items and keeps the caller's
        ETag when the response carries none. Rate limiting (429, or 403 with
        rate-limit signals) is returned as ``secondary_rate_limited`` instead of
        raised. Other 4xx and malformed bodies raise ``GitHubClientError``;
        5xx and network errors are retried before they propagate.
        """
        size = clamp_per_page(per_page)
        route = f"/users/{username}/starred"
        headers: dict[str, str] = {}
        if_none_match = format_if_none_match(etag)
        if if_none_match:
            headers["If-None-Match"] = if_none_match

        async def _fetch() -> httpx.Response:
            response = await self.client.get(
                route, params={"per_page": size, "page": page}, headers=headers
            )
            if response.status_code >= 500:
                msg = f"GET {route} failed with status {response.status_code}"
                raise GitHubRetryableError(msg, status_code=response.status_code, route=route)
            return response

        response = await self._with_retry(_fetch, "fetch_starred_page")
        status = response.status_code
        remaining = _int_header(response, "x-ratelimit-remaining")
        reset = _reset_header(response)

        if status == 304:
            return FetchStarredResult(
                items=[],
                etag=sanitize_etag(response.headers.get("etag")) or sanitize_etag(etag),
                not_modified=True,
                status=status,
                rate_limit_remaining=remaining,
                rate_limit_reset=reset,
            )

        if _is_rate_limited(response, remaining):
            retry_after = _retry_after_seconds(response, remaining, reset)
            logger.warning(
                "github_rate_limited",
                extra={
                    "route": route,
                    "page": page,
                    "status": status,
                    "retry_after_sec": retry_after,
                    "rate_limit_remaining": remaining,
                },
            )
            return FetchStarredResult(
                items=[],
                etag=sanitize_etag(etag),
                status=status,
                rate_limit_remaining=remaining,
                rate_limit_reset=reset,
                secondary_rate_limited=True,
                retry_after_sec=retry_after,
            )

        if status >= 400:
            msg = f"GET {route} failed with status {status}"
            raise GitHubClientError(
                msg,
                status_code=status,
                route=route,
                rate_limit_remaining=remaining,
                rate_limit_reset=reset,
            )

        try:
            items = STARRED_LIST.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            msg = f"GET {route} returned a malformed body: {exc}"
            raise GitHubClientError(msg, status_code=status, route=route) from exc

        return FetchStarredResult(
            items=items,
            etag=sanitize_etag(response.headers.get("etag")),
            status=status,
            rate_limit_remaining=remaining,
            rate_limit_reset=reset,
        )

    async def fetch_first_star_page(
        self, username: str, *, etag: str | None = None
    ) -> FetchStarredResult:
        """Cheap 1-item head request used to detect an unchanged listing."""
        return await self.fetch_starred_page(username, page=1, per_page=1, etag=etag)

    def iterate_starred(
        self,
        username: str,
        *,
        per_page: int = 50,
        max_pages: int = 0,
        etag: str | None = None,
        stop_when: Callable[[StarredItem], bool] | None = None,
    ) -> StarredPages:
        size = clamp_per_page(per_page)

        async def _fetch(page: int, page_etag: str | None) -> FetchStarredResult:
            return await self.fetch_starred_page(
                username, page=page, per_page=size, etag=page_etag
            )

        return StarredPages(
            _fetch, per_page=size, max_pages=max_pages, etag=etag, stop_when=stop_when
        )

    async def get_readme_raw(self, full_name: str) -> str:
        """Return the raw README of ``owner/repo``; empty string when unavailable."""
        route = f"/repos/{full_name}/readme"

        async def _fetch() -> str:
            response = await self.client.get(route, headers={"Accept": RAW_MEDIA_TYPE})
            if response.status_code >= 500:
                msg = f"GET {route} failed with status {response.status_code}"
                raise GitHubRetryableError(msg, status_code=response.status_code, route=route)
            response.raise_for_status()
            return response.text

        try:
            return await self._with_retry(_fetch, "get_readme_raw")
        except (GitHubClientError, httpx.HTTPError) as exc:
            logger.info("github_readme_unavailable", extra={"repo": full_name, "error": str(exc)})
            return ""
