"""Global error handlers: every failure leaves as a JSON ``{"detail": ...}`` body."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ctrack.participation.errors import (
    InvariantViolationError,
    ParticipationError,
    StoreUnavailableError,
)

logger = structlog.get_logger()

STORE_UNAVAILABLE_RETRY_AFTER = "1"


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(ParticipationError)
    async def participation_error_handler(request: Request, exc: ParticipationError) -> JSONResponse:
        """Rule violations map to their own status codes; invariant breaks are logged as errors."""
        if isinstance(exc, InvariantViolationError):
            logger.error("participation_invariant_violated", path=request.url.path, error=exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        """Nothing was committed, so the client may retry."""
        logger.warning(
            "store_unavailable",
            path=request.url.path,
            operation=exc.operation,
            cause=repr(exc.cause) if exc.cause else None,
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable, please retry"},
            headers={"Retry-After": STORE_UNAVAILABLE_RETRY_AFTER},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
