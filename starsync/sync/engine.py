"""Reconciliation of the GitHub starred listing into the local project table.

A run walks pages newest-first. In incremental mode it stops at the first
entry at or below the stored cursor, which relies on GitHub returning stars in
strictly descending ``starred_at`` order; an out-of-order entry older than the
cursor is skipped without error. Cursor and ETag are persisted once, at the
end of a successful run, so a failed run leaves them untouched and the next
attempt resumes from the same point.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from starsync.adapters.github.client import GitHubClient, clamp_per_page
from starsync.core.logging_utils import generate_correlation_id
from starsync.core.time_utils import ensure_utc, parse_iso_datetime, utc_now
from starsync.sync.archive import ArchiveService
from starsync.sync.errors import RateLimitedError, classify_error
from starsync.sync.mapping import diff_project, map_starred_item
from starsync.sync.state import normalize_error_message
from starsync.sync.types import SyncMode, SyncOptions, SyncOutcome, SyncStats

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from starsync.adapters.github.models import StarredItem
    from starsync.config import AppConfig
    from starsync.sync.protocols import ProjectRepository, StarredFetcher, StarredFetcherFactory
    from starsync.sync.state import SyncStateRecord, SyncStateService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunPlan:
    mode: SyncMode
    per_page: int
    max_pages: int
    soft_delete: bool
    respect_cursor: bool


class StarSyncService:
    """Mirror one user's stars into ``projects``.

    Collaborators are injected so tests can swap the HTTP client and the
    repositories; by default the client is built from ``cfg.github``.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        projects: ProjectRepository,
        state: SyncStateService,
        client_factory: StarredFetcherFactory | None = None,
        archive: ArchiveService | None = None,
    ) -> None:
        self.cfg = cfg
        self._projects = projects
        self._state = state
        self._archive = archive or ArchiveService(projects)
        self._client_factory = client_factory or (lambda: GitHubClient.from_config(cfg.github))

    @property
    def source(self) -> str:
        return self.cfg.sync.source

    @property
    def key(self) -> str:
        return self.cfg.sync_key

    def plan(self, options: SyncOptions) -> RunPlan:
        """Resolve per-run options against configured defaults."""
        soft_delete = options.soft_delete_unstarred
        if soft_delete is None:
            soft_delete = (
                True if options.mode is SyncMode.FULL else self.cfg.sync.soft_delete_unstarred
            )
        return RunPlan(
            mode=options.mode,
            per_page=clamp_per_page(options.per_page or self.cfg.sync.per_page),
            max_pages=(
                options.max_pages if options.max_pages is not None else self.cfg.sync.max_pages
            ),
            soft_delete=soft_delete,
            respect_cursor=options.respect_cursor,
        )

    async def run(
        self, options: SyncOptions | None = None, *, cid: str | None = None
    ) -> SyncOutcome:
        """Execute one run and report how it ended; errors are returned, not raised."""
        options = options or SyncOptions()
        cid = cid or generate_correlation_id()
        plan = self.plan(options)
        started_at = utc_now()
        started = time.perf_counter()
        stats = SyncStats(started_at=started_at)

        logger.info(
            "sync_run_started",
            extra={
                "cid": cid,
                "source": self.source,
                "key": self.key,
                "mode": plan.mode.value,
                "per_page": plan.per_page,
                "max_pages": plan.max_pages,
                "soft_delete": plan.soft_delete,
            },
        )

        try:
            await self._state.ensure(self.source, self.key)
            await self._state.touch_run(self.source, self.key, started_at)
            record = await self._state.get(self.source, self.key)
            async with self._client_factory() as client:
                await self._reconcile(client, plan, record, stats, started, cid)
        except Exception as exc:
            error = classify_error(exc)
            self._finish(stats, started)
            stats.errors.append(normalize_error_message(error))
            logger.error(
                "sync_run_failed",
                exc_info=True,
                extra={
                    "cid": cid,
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "retryable": error.retryable,
                    "pages": stats.pages,
                },
            )
            try:
                await self._state.mark_error(self.source, self.key, error)
            except Exception:
                logger.exception("sync_mark_error_failed", extra={"cid": cid})
            return SyncOutcome(stats=stats, error=error)

        return SyncOutcome(stats=stats)

    async def _reconcile(
        self,
        client: StarredFetcher,
        plan: RunPlan,
        record: SyncStateRecord | None,
        stats: SyncStats,
        started: float,
        cid: str,
    ) -> None:
        username = self.cfg.github.username
        incremental = plan.mode is SyncMode.INCREMENTAL
        prev_cursor = record.cursor if record else None
        prev_etag = record.etag if record else None
        walk_etag = prev_etag if incremental else None
        cursor_limit = prev_cursor if incremental or plan.respect_cursor else None

        head_etag: str | None = None
        if incremental and prev_etag and self.cfg.sync.precheck_enabled:
            try:
                head = await client.fetch_first_star_page(username, etag=prev_etag)
            except Exception as exc:
                logger.warning(
                    "sync_precheck_failed",
                    extra={"cid": cid, "error": str(exc), "error_type": type(exc).__name__},
                )
                head = None
            if head is not None and not head.secondary_rate_limited:
                stats.rate_limit_remaining = head.rate_limit_remaining
                if head.not_modified:
                    await self._succeed_unchanged(stats, started, head.etag or prev_etag, cid)
                    return
                head_etag = head.etag

        walk = client.iterate_starred(
            username,
            per_page=plan.per_page,
            max_pages=plan.max_pages,
            etag=walk_etag,
            stop_when=self._cursor_predicate(cursor_limit),
        )

        first_page_etag: str | None = None
        top_cursor: str | None = None
        seen: set[int] = set()

        async for page in walk:
            if page.not_modified:
                await self._succeed_unchanged(
                    stats, started, head_etag or page.result.etag or prev_etag, cid
                )
                return
            if page.rate_limited:
                raise RateLimitedError(
                    f"GitHub rate limit hit on page {page.number}",
                    retry_after_sec=page.result.retry_after_sec,
                )

            stats.pages += 1
            if page.result.rate_limit_remaining is not None:
                stats.rate_limit_remaining = page.result.rate_limit_remaining
            if page.number == 1:
                first_page_etag = page.result.etag
                if page.result.items:
                    top_cursor = page.result.items[0].cursor

            stats.scanned += len(page.items)
            observed_at = utc_now()
            for item in page.items:
                await self._upsert(item, stats, seen, observed_at)

        stats.stop_reason = walk.termination.value if walk.termination else None

        if plan.soft_delete and walk.reached_end and seen:
            report = await self._archive.archive_unseen(seen, cid=cid)
            stats.soft_deleted = report.archived
            stats.archive_failed = report.failed
        elif plan.soft_delete:
            logger.info(
                "sync_archival_skipped",
                extra={"cid": cid, "stop_reason": stats.stop_reason, "seen": len(seen)},
            )

        finished_at = self._finish(stats, started)
        await self._state.mark_success(
            self.source,
            self.key,
            cursor=top_cursor or prev_cursor,
            etag=head_etag or first_page_etag,
            stats=stats,
            finished_at=finished_at,
        )
        logger.info(
            "sync_run_completed",
            extra={
                "cid": cid,
                "scanned": stats.scanned,
                "created": stats.created,
                "updated": stats.updated,
                "unchanged": stats.unchanged,
                "soft_deleted": stats.soft_deleted,
                "archive_failed": stats.archive_failed,
                "pages": stats.pages,
                "stop_reason": stats.stop_reason,
                "duration_ms": stats.duration_ms,
            },
        )

    async def _succeed_unchanged(
        self, stats: SyncStats, started: float, etag: str | None, cid: str
    ) -> None:
        stats.stop_reason = "not_modified"
        finished_at = self._finish(stats, started)
        await self._state.mark_success(
            self.source, self.key, etag=etag, stats=stats, finished_at=finished_at
        )
        logger.info(
            "sync_run_not_modified",
            extra={"cid": cid, "duration_ms": stats.duration_ms},
        )

    async def _upsert(
        self, item: StarredItem, stats: SyncStats, seen: set[int], observed_at: datetime
    ) -> None:
        data = map_starred_item(item)
        github_id = data["github_id"]
        seen.add(github_id)

        existing = await self._projects.async_get_by_github_id(github_id)
        if existing is None:
            await self._projects.async_create_project(
                {**data, "last_sync_at": observed_at, "touched_at": observed_at}
            )
            stats.created += 1
            return

        patch = diff_project(existing, data)
        if patch:
            await self._projects.async_update_project(
                existing["id"], {**patch, "last_sync_at": observed_at, "touched_at": observed_at}
            )
            stats.updated += 1
        else:
            await self._projects.async_update_project(existing["id"], {"touched_at": observed_at})
            stats.unchanged += 1

    @staticmethod
    def _cursor_predicate(cursor: str | None) -> Callable[[StarredItem], bool] | None:
        limit = parse_iso_datetime(cursor)
        if limit is None:
            return None

        def _already_synced(item: StarredItem) -> bool:
            starred_at = ensure_utc(item.starred_at)
            return starred_at is not None and starred_at <= limit

        return _already_synced

    @staticmethod
    def _finish(stats: SyncStats, started: float) -> datetime:
        finished_at = utc_now()
        stats.finished_at = finished_at
        stats.duration_ms = int((time.perf_counter() - started) * 1000)
        return finished_at
