"""Per-IP rate limiting middleware for the inbound gateway.

Runs before routing, so requests over the limit are rejected before any
signature verification or handler logic.

Middleware ordering (in main.py):
1. RequestIdMiddleware (outermost)
2. IpRateLimitMiddleware (this middleware)
3. Routes
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from xtwebhook.api.error_model import make_error_response_no_request
from xtwebhook.rate_limit.limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Source IP of a request.

    With trust_forwarded_for, the first X-Forwarded-For hop wins (only safe
    behind a proxy that overwrites the header).
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


class IpRateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects clients exceeding the sliding-window limit with 429.

    Fails closed: internal limiter errors return 500 rate_limiter_failed.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: SlidingWindowRateLimiter,
        trust_forwarded_for: bool = False,
    ) -> None:
        super().__init__(app)
        self._limiter = limiter
        self._trust_forwarded_for = trust_forwarded_for

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id: str | None = getattr(request.state, "request_id", None)
        ip = client_ip(request, self._trust_forwarded_for)

        try:
            decision = self._limiter.check(ip)
        except Exception:
            logger.exception(
                "Rate limiter internal error for client=%s",
                ip,
                extra={"request_id": request_id},
            )
            return make_error_response_no_request(
                error="rate_limiter_failed",
                message="Rate limiter internal error",
                http_status=500,
                request_id=request_id,
            )

        if decision.allowed:
            response = await call_next(request)
            response.headers["X-RateLimit-Limit"] = str(decision.limit)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
            return response

        retry_after = decision.retry_after_seconds or 1
        logger.info(
            "Rate limit exceeded: client=%s limit=%d retry_after=%d",
            ip,
            decision.limit,
            retry_after,
            extra={"request_id": request_id},
        )

        return make_error_response_no_request(
            error="rate_limit_exceeded",
            message="Too many requests from this IP, please try again later.",
            http_status=429,
            request_id=request_id,
            details={"limit": decision.limit, "retry_after_seconds": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
