from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from starsync.sync.protocols import ProjectRepository

logger = logging.getLogger(__name__)


class ArchiveReason(StrEnum):
    MANUAL = "manual"
    NOT_OBSERVED = "not-observed"


@dataclass
class ArchiveReport:
    archived: int = 0
    failed: int = 0


class ArchiveService:
    """Snapshot-then-delete for projects that left the starred collection."""

    def __init__(self, repository: ProjectRepository) -> None:
        self._repo = repository

    async def archive(self, project_id: int, reason: ArchiveReason = ArchiveReason.MANUAL) -> bool:
        archive_id = await self._repo.async_archive_and_delete(project_id, reason=reason.value)
        return archive_id is not None

    async def archive_unseen(
        self, seen_github_ids: Iterable[int], *, cid: str | None = None
    ) -> ArchiveReport:
        """Archive every project whose GitHub id was not observed.

        A single failure is logged and counted; the remaining projects are
        still processed.
        """
        report = ArchiveReport()
        candidates = await self._repo.async_list_ids_not_in(seen_github_ids)
        for project_id in candidates:
            try:
                if await self.archive(project_id, ArchiveReason.NOT_OBSERVED):
                    report.archived += 1
            except Exception as exc:
                report.failed += 1
                logger.warning(
                    "project_archive_failed",
                    exc_info=True,
                    extra={"cid": cid, "project_id": project_id, "error": str(exc)},
                )
        if candidates:
            logger.info(
                "projects_archived",
                extra={
                    "cid": cid,
                    "candidates": len(candidates),
                    "archived": report.archived,
                    "failed": report.failed,
                },
            )
        return report
