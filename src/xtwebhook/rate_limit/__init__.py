"""xtwebhook rate limiting module.

Provides per-source-IP rolling window rate limiting for the inbound gateway.
"""

from xtwebhook.rate_limit.limiter import (
    RateLimitConfig,
    RateLimitDecision,
    SlidingWindowRateLimiter,
)

__all__ = [
    "RateLimitConfig",
    "RateLimitDecision",
    "SlidingWindowRateLimiter",
]
