"""Global exception handlers for the admin API.

Every error body has the shape ``{"error": {"code", "message", "retryable", ...details}}``.
"""

from __future__ import annotations

import logging
from typing import Any

import peewee
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from redis.exceptions import RedisError

from starsync.api.exceptions import APIException, ErrorCode
from starsync.queue.jobs import JobConflictError

logger = logging.getLogger(__name__)


def error_body(
    code: ErrorCode, message: str, *, retryable: bool = False, **details: Any
) -> dict[str, Any]:
    return {"error": {"code": code.value, "message": message, "retryable": retryable, **details}}


async def api_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle custom API exceptions."""
    if not isinstance(exc, APIException):
        raise exc

    logger.warning(
        "api_error",
        extra={
            "error_code": exc.error_code.value,
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code, exc.message, retryable=exc.retryable, **exc.details),
    )


async def job_conflict_handler(request: Request, exc: Exception) -> Response:
    """A manual trigger collided with an in-flight run of the same job id."""
    if not isinstance(exc, JobConflictError):
        raise exc

    logger.info(
        "sync_trigger_conflict",
        extra={"job_id": exc.job_id, "state": exc.state.value, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(
            ErrorCode.SYNC_ALREADY_RUNNING,
            str(exc),
            retryable=True,
            job_id=exc.job_id,
            state=exc.state.value,
        ),
    )


async def validation_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle request body validation errors."""
    if not isinstance(exc, RequestValidationError):
        raise exc

    fields = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("request_validation_failed", extra={"errors": fields, "path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(ErrorCode.VALIDATION_ERROR, "Request validation failed", fields=fields),
    )


async def backend_exception_handler(request: Request, exc: Exception) -> Response:
    """Database or Redis failures are reported as temporarily unavailable."""
    if isinstance(exc, peewee.PeeweeException):
        code = ErrorCode.DATABASE_ERROR
    else:
        code = ErrorCode.QUEUE_UNAVAILABLE
    logger.error(
        "api_backend_error",
        exc_info=True,
        extra={"error_code": code.value, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_body(code, "Backend temporarily unavailable", retryable=True),
    )


async def global_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all handler for unexpected exceptions."""
    logger.error("api_unhandled_exception", exc_info=True, extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorCode.INTERNAL_ERROR, "An internal server error occurred"),
    )


def register_exception_handlers(app: Any) -> None:
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(JobConflictError, job_conflict_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(peewee.PeeweeException, backend_exception_handler)
    app.add_exception_handler(RedisError, backend_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
