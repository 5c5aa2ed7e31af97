"""xtwebhook API error handling.

Provides HttpError and the FastAPI exception handlers shared by the gateway
and sender apps.

Global exception handlers:
- HttpError: Application errors with a structured envelope
- AuthenticationError: Signature/timestamp verification failures -> 401
- RegistryError: NotFound -> 404, Conflict -> 409, Validation -> 422
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all (fail closed, no stack traces)
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from xtwebhook.api.error_model import get_error_code_for_status, make_error_response
from xtwebhook.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    RegistryError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class HttpError(Exception):
    """Application-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401, 404, 502).
        error: Machine-readable error code (e.g., "unauthorized").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details


async def http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, HttpError)

    return make_error_response(
        request,
        error=exc.error,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def authentication_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a verification failure as 401 with its reason code."""
    assert isinstance(exc, AuthenticationError)

    logger.warning(
        "Webhook rejected: %s",
        exc.reason,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )
    return make_error_response(
        request,
        error=exc.reason,
        message=str(exc),
        http_status=401,
    )


_REGISTRY_STATUS: dict[type[RegistryError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 422,
}


async def registry_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map registry failures to 404/409/422."""
    assert isinstance(exc, RegistryError)

    status = next(
        (code for cls, code in _REGISTRY_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    return make_error_response(
        request,
        error=get_error_code_for_status(status),
        message=str(exc),
        http_status=status,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)

    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"
    return make_error_response(
        request,
        error=get_error_code_for_status(exc.status_code),
        message=message,
        http_status=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map Pydantic validation errors without echoing raw input."""
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        error="validation_failed",
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log and return a generic 500."""
    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )

    return make_error_response(
        request,
        error="internal_error",
        message="Internal server error",
        http_status=500,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the shared handlers on an app."""
    app.add_exception_handler(HttpError, http_error_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(RegistryError, registry_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
