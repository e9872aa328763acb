"""Liveness and dependency health."""

from __future__ import annotations

import asyncio
import time
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from starsync.api.dependencies import get_container
from starsync.di.container import Container

router = APIRouter()


async def _check_database(container: Container) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        await asyncio.wait_for(container.db.ping(), timeout=2.0)
    except Exception as exc:
        return {"status": "unhealthy", "error": type(exc).__name__}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}


async def _check_redis(container: Container) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        await asyncio.wait_for(container.redis.ping(), timeout=2.0)
    except Exception as exc:
        return {"status": "unhealthy", "error": type(exc).__name__}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}


@router.get("/health")
async def health_check(container: Annotated[Container, Depends(get_container)]) -> JSONResponse:
    checks = {
        "database": await _check_database(container),
        "redis": await _check_redis(container),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "degraded", "checks": checks},
    )
