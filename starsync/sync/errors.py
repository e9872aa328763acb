"""Failure taxonomy for reconciliation runs.

The job layer decides retry-vs-give-up from ``retryable`` alone; rate-limit
failures additionally carry the delay GitHub asked for.
"""

from __future__ import annotations

import httpx

from starsync.adapters.github.client import GitHubClientError, GitHubRetryableError


class SyncError(Exception):
    retryable: bool = True

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransientSyncError(SyncError):
    """Network timeout, 5xx or connection reset that outlived the client retries."""

    retryable = True


class RateLimitedError(SyncError):
    retryable = True

    def __init__(
        self,
        message: str = "GitHub rate limit hit",
        *,
        retry_after_sec: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.retry_after_sec = retry_after_sec


class FatalSyncError(SyncError):
    """Malformed response or broken invariant; retrying will not help."""

    retryable = False


def classify_error(exc: BaseException) -> SyncError:
    """Map any failure raised during a run onto the sync taxonomy."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, GitHubRetryableError | httpx.TransportError | TimeoutError):
        return TransientSyncError(str(exc) or type(exc).__name__, cause=exc)
    if isinstance(exc, GitHubClientError):
        return FatalSyncError(str(exc), cause=exc)
    if isinstance(exc, ValueError | TypeError | KeyError):
        return FatalSyncError(f"{type(exc).__name__}: {exc}", cause=exc)
    return TransientSyncError(f"{type(exc).__name__}: {exc}", cause=exc)
