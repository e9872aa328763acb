from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from starsync.di.container import Container
    from starsync.queue.orchestrator import JobOrchestrator


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_orchestrator(request: Request) -> JobOrchestrator:
    return get_container(request).orchestrator
