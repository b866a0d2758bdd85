"""
Error handlers: map ``ConveyorError`` subclasses to RFC 7807 responses.

    NotFoundError           → 404
    InvalidTransitionError  → 409
    any other ConveyorError → 400
    anything else           → 500
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conveyor.api.schemas import ProblemDetail
from conveyor.core.errors import ConveyorError, InvalidTransitionError, NotFoundError
from conveyor.core.logging import get_logger

logger = get_logger(__name__)

# ── Error class → HTTP status ────────────────────────────────────────────

ERROR_STATUS: dict[type[ConveyorError], tuple[int, str]] = {
    NotFoundError: (404, "Not Found"),
    InvalidTransitionError: (409, "Conflict"),
}


def status_for_error(exc: ConveyorError) -> tuple[int, str]:
    for error_type, mapped in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return mapped
    return 400, "Bad Request"


def problem_response(*, status: int, title: str, detail: str = "", instance: str = "", code: str = "") -> JSONResponse:
    """Build an RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, code=code)
    return JSONResponse(status_code=status, content=body.model_dump())


async def conveyor_error_handler(request: Request, exc: ConveyorError) -> JSONResponse:
    status, title = status_for_error(exc)
    return problem_response(
        status=status,
        title=title,
        detail=exc.message,
        instance=str(request.url.path),
        code=type(exc).__name__,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("api.unhandled_error", path=str(request.url.path))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=str(request.url.path),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConveyorError, conveyor_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = ["install_error_handlers", "problem_response", "status_for_error"]
