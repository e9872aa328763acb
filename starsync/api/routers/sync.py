"""Manual sync triggers, sync status and queue counters."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel

from starsync.api.dependencies import get_orchestrator
from starsync.api.exceptions import ResourceNotFoundError
from starsync.queue.orchestrator import JobOrchestrator
from starsync.sync.types import SyncOptions

logger = logging.getLogger(__name__)

router = APIRouter()

Orchestrator = Annotated[JobOrchestrator, Depends(get_orchestrator)]


class EnqueuedJob(BaseModel):
    job_id: str


@router.post("/stars", status_code=status.HTTP_202_ACCEPTED, response_model=EnqueuedJob)
async def trigger_star_sync(
    orchestrator: Orchestrator,
    options: Annotated[SyncOptions | None, Body()] = None,
) -> EnqueuedJob:
    """Queue a manual sync. Identical in-flight requests answer 409."""
    job_id = await orchestrator.enqueue_manual_run(options or SyncOptions())
    return EnqueuedJob(job_id=job_id)


@router.get("/stars/state")
async def get_star_sync_state(orchestrator: Orchestrator) -> dict[str, Any]:
    status_ = await orchestrator.get_task_status()
    if status_ is None:
        raise ResourceNotFoundError("sync_state", orchestrator.cfg.sync_key)
    return status_


@router.get("/stars/jobs/{job_id}")
async def get_star_sync_job(job_id: str, orchestrator: Orchestrator) -> dict[str, Any]:
    job = await orchestrator.get_job(job_id)
    if job is None:
        raise ResourceNotFoundError("job", job_id)
    return job.summary()


@router.get("/queues")
async def get_queue_counts(orchestrator: Orchestrator) -> dict[str, dict[str, int]]:
    return await orchestrator.get_all_queue_counts()
