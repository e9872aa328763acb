"""Durable Redis job queues and the worker pool that drains them."""

from starsync.queue.jobs import (
    JobConflictError,
    JobOptions,
    JobState,
    MaintenanceOptions,
    MaintenanceTask,
    SyncTask,
    build_manual_job_id,
)
from starsync.queue.redis_queue import JobExistsError, RedisJobQueue
from starsync.queue.worker import JobOutcome, Worker

__all__ = [
    "JobConflictError",
    "JobExistsError",
    "JobOptions",
    "JobOutcome",
    "JobState",
    "MaintenanceOptions",
    "MaintenanceTask",
    "RedisJobQueue",
    "SyncTask",
    "Worker",
    "build_manual_job_id",
]
