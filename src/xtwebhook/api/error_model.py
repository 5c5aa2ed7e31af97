"""Shared error response builder for the xtwebhook HTTP apps.

Every middleware and exception handler renders errors through
make_error_response() so clients always get the same envelope:

- error: str - machine-readable code (e.g. "bad_signature", "not_found")
- message: str - human-readable message
- details: dict | None - optional extra context (never secrets)
- request_id: str - correlation id, also returned in X-Request-Id
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


def get_request_id(request: Request) -> str:
    """Request id from middleware state, the X-Request-Id header, or a new UUID."""
    request_id: str | None = getattr(request.state, "request_id", None)
    if request_id is not None:
        return str(request_id)

    header_id: str | None = request.headers.get("X-Request-Id")
    if header_id:
        return header_id

    return str(uuid.uuid4())


def make_error_response_no_request(
    *,
    error: str,
    message: str,
    http_status: int,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the error envelope when no Request object is at hand."""
    if request_id is None:
        request_id = str(uuid.uuid4())

    body: dict[str, Any] = {
        "error": error,
        "message": message,
        "details": details,
        "request_id": request_id,
    }

    response = JSONResponse(status_code=http_status, content=body, headers=headers)
    response.headers["X-Request-Id"] = request_id
    return response


def make_error_response(
    request: Request,
    *,
    error: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the error envelope for a request.

    Args:
        request: Incoming request (for request_id extraction).
        error: Machine-readable error code.
        message: Human-readable error message.
        http_status: HTTP status code.
        details: Optional additional context (no sensitive data).
        headers: Extra response headers (e.g. Retry-After).
    """
    return make_error_response_no_request(
        error=error,
        message=message,
        http_status=http_status,
        request_id=get_request_id(request),
        details=details,
        headers=headers,
    )


HTTP_STATUS_TO_ERROR: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    415: "unsupported_media_type",
    422: "validation_failed",
    429: "rate_limit_exceeded",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def get_error_code_for_status(status_code: int) -> str:
    return HTTP_STATUS_TO_ERROR.get(status_code, "error")
