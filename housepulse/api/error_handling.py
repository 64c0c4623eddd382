from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from housepulse.api.cors import cors_headers
from housepulse.api.schemas import ErrorBody
from housepulse.logging import get_logger
from housepulse.service.errors import ServerError, ServiceError

logger = get_logger(__name__)


def _cors_origin(request: Request | None) -> str:
    if request is None:
        return "*"
    return getattr(request.app.state, "cors_origin", "*")


def _error_response(
    status_code: int, message: str, request: Request | None = None
) -> JSONResponse:
    """Build the ``{"error": message}`` body with CORS headers attached."""
    body = ErrorBody(error=message)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        headers=cors_headers(_cors_origin(request)),
    )


def unhandled_error_response(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return _error_response(500, ServerError.default_message, request)


def register_exception_handlers(app: FastAPI) -> None:
    """Install exception handlers mapping domain errors to flat error bodies."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, request)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
            )
            message = ServerError.default_message
        return _error_response(exc.status_code, message, request)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        return unhandled_error_response(request, exc)

    @app.middleware("http")
    async def convert_unhandled_errors(request: Request, call_next):
        """Turn unexpected errors into the generic 500 inside the middleware stack.

        Must be the innermost ``http`` middleware; the ``Exception`` handler
        above only covers errors raised outside the stack.
        """
        try:
            return await call_next(request)
        except Exception as exc:
            return unhandled_error_response(request, exc)
