from __future__ import annotations

from typing import TYPE_CHECKING

from starsync.db.models import RefreshToken
from starsync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

if TYPE_CHECKING:
    from datetime import datetime

    import peewee


def _expired(cutoff: datetime) -> peewee.Expression:
    return RefreshToken.expires_at < cutoff


def _revoked(cutoff: datetime) -> peewee.Expression:
    return (
        (RefreshToken.revoked == True)  # noqa: E712
        & RefreshToken.revoked_at.is_null(False)
        & (RefreshToken.revoked_at < cutoff)
    )


class SqliteRefreshTokenRepositoryAdapter(SqliteBaseRepository):
    """Batch purge helpers for refresh tokens."""

    async def async_count_expired_before(self, cutoff: datetime) -> int:
        def _count() -> int:
            return RefreshToken.select().where(_expired(cutoff)).count()

        return await self._execute(_count, operation_name="count_expired_tokens", read_only=True)

    async def async_count_revoked_before(self, cutoff: datetime) -> int:
        def _count() -> int:
            return RefreshToken.select().where(_revoked(cutoff)).count()

        return await self._execute(_count, operation_name="count_revoked_tokens", read_only=True)

    async def async_delete_expired_batch(self, cutoff: datetime, *, limit: int) -> int:
        def _delete() -> int:
            ids = [
                row.id
                for row in RefreshToken.select(RefreshToken.id)
                .where(_expired(cutoff))
                .order_by(RefreshToken.id)
                .limit(limit)
            ]
            if not ids:
                return 0
            return RefreshToken.delete().where(RefreshToken.id.in_(ids)).execute()

        return await self._execute(_delete, operation_name="delete_expired_tokens")

    async def async_delete_revoked_batch(self, cutoff: datetime, *, limit: int) -> int:
        def _delete() -> int:
            ids = [
                row.id
                for row in RefreshToken.select(RefreshToken.id)
                .where(_revoked(cutoff))
                .order_by(RefreshToken.id)
                .limit(limit)
            ]
            if not ids:
                return 0
            return RefreshToken.delete().where(RefreshToken.id.in_(ids)).execute()

        return await self._execute(_delete, operation_name="delete_revoked_tokens")
