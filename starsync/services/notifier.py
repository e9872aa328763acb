"""Run notifications.

The orchestrator calls a ``Notifier`` after every final job outcome. Delivery
problems are the caller's to log; they never affect job state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from starsync.config import NotifyConfig
    from starsync.sync.types import SyncStats

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify_run_succeeded(self, job_id: str, stats: SyncStats) -> None: ...

    async def notify_run_failed(self, job_id: str, error: BaseException) -> None: ...

    async def notify_maintenance_succeeded(self, job_id: str, summary: dict[str, Any]) -> None: ...

    async def notify_maintenance_failed(self, job_id: str, error: BaseException) -> None: ...


class LoggingNotifier:
    """Writes notifications to the application log, tagged with the recipient."""

    def __init__(self, cfg: NotifyConfig) -> None:
        self.cfg = cfg

    @property
    def recipient(self) -> str | None:
        return self.cfg.mail_to or None

    async def notify_run_succeeded(self, job_id: str, stats: SyncStats) -> None:
        logger.info(
            "notify_sync_succeeded",
            extra={
                "to": self.recipient,
                "job_id": job_id,
                "scanned": stats.scanned,
                "created": stats.created,
                "updated": stats.updated,
                "unchanged": stats.unchanged,
                "soft_deleted": stats.soft_deleted,
                "pages": stats.pages,
                "stop_reason": stats.stop_reason,
                "duration_ms": stats.duration_ms,
            },
        )

    async def notify_run_failed(self, job_id: str, error: BaseException) -> None:
        logger.error(
            "notify_sync_failed",
            extra={
                "to": self.recipient,
                "job_id": job_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )

    async def notify_maintenance_succeeded(self, job_id: str, summary: dict[str, Any]) -> None:
        logger.info(
            "notify_maintenance_succeeded",
            extra={"to": self.recipient, "job_id": job_id, "summary": summary},
        )

    async def notify_maintenance_failed(self, job_id: str, error: BaseException) -> None:
        logger.error(
            "notify_maintenance_failed",
            extra={
                "to": self.recipient,
                "job_id": job_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
