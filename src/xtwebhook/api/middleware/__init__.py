"""xtwebhook API middleware package."""

from xtwebhook.api.middleware.rate_limit import IpRateLimitMiddleware
from xtwebhook.api.middleware.request_id import RequestIdMiddleware

__all__ = ["IpRateLimitMiddleware", "RequestIdMiddleware"]
