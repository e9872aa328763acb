"""Size-capped JSON codec for the per-run stats blob.

Oversized payloads shed optional fields until they fit, so whatever gets
stored is always valid JSON that decodes back into ``SyncStats``.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from starsync.sync.types import SyncStats

logger = logging.getLogger(__name__)

STATS_JSON_MAX_BYTES = 4096

_DROP_ORDER = (
    "errors",
    "stopReason",
    "rateLimitRemaining",
    "durationMs",
    "startedAt",
    "finishedAt",
    "archiveFailed",
)


def _dumps(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _fits(text: str, limit: int) -> bool:
    return len(text.encode("utf-8")) <= limit


def encode_stats(stats: SyncStats, *, limit: int = STATS_JSON_MAX_BYTES) -> str:
    payload = stats.model_dump(mode="json", by_alias=True)
    text = _dumps(payload)
    if _fits(text, limit):
        return text

    errors = list(payload.get("errors") or [])
    while errors:
        errors.pop()
        payload["errors"] = errors
        text = _dumps(payload)
        if _fits(text, limit):
            return text

    for key in _DROP_ORDER:
        payload.pop(key, None)
        text = _dumps(payload)
        if _fits(text, limit):
            break

    logger.warning(
        "sync_stats_truncated",
        extra={"limit": limit, "kept_fields": sorted(payload), "size": len(text)},
    )
    return text


def decode_stats(raw: str | None) -> SyncStats | None:
    if not raw:
        return None
    try:
        return SyncStats.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        logger.warning("sync_stats_decode_failed", extra={"size": len(raw)})
        return None
