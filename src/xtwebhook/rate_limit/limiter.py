"""Sliding-window rate limiter for the inbound webhook gateway.

Limits each client key (source IP) to a maximum number of requests within a
rolling window (default 100 requests / 15 minutes). Requests over the limit
are rejected before signature verification runs.

Uses monotonic time. Thread-safe for concurrent access within a single process.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from xtwebhook.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PRUNE_INTERVAL: Final[int] = 1000


class RateLimitConfigError(ConfigError):
    """Raised when rate limit configuration is invalid."""


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration (immutable).

    Attributes:
        max_requests: Requests allowed per key within one window.
        window_seconds: Length of the rolling window in seconds.
    """

    max_requests: int
    window_seconds: int

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_requests <= 0:
            raise RateLimitConfigError(
                f"WEBHOOK_RATE_LIMIT_MAX must be a positive integer, got {self.max_requests}"
            )
        if self.window_seconds <= 0:
            raise RateLimitConfigError(
                "WEBHOOK_RATE_LIMIT_WINDOW_SECONDS must be a positive integer, "
                f"got {self.window_seconds}"
            )


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed.
        retry_after_seconds: Seconds until the oldest request leaves the window
            (None if allowed).
        remaining: Requests left in the current window after this one.
        limit: Configured maximum per window.
    """

    allowed: bool
    retry_after_seconds: int | None
    remaining: int
    limit: int


class SlidingWindowRateLimiter:
    """Per-key rolling window limiter.

    Keeps the monotonic timestamps of accepted requests per key and evicts
    those older than the window on every check. Every prune_interval checks
    the whole map is swept, so keys idle for a full window are dropped and
    memory stays bounded by the keys seen within one window.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        prune_interval: int = DEFAULT_PRUNE_INTERVAL,
    ) -> None:
        if prune_interval <= 0:
            raise ValueError(f"prune_interval must be positive, got {prune_interval}")
        self._config = config
        self._clock = clock
        self._prune_interval = prune_interval
        self._checks_since_prune = 0
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> RateLimitConfig:
        """Get the rate limit configuration."""
        return self._config

    @property
    def tracked_keys(self) -> int:
        """Number of keys currently holding request history."""
        with self._lock:
            return len(self._hits)

    def check(self, key: str) -> RateLimitDecision:
        """Check and record one request for the given key."""
        limit = self._config.max_requests
        window = self._config.window_seconds

        with self._lock:
            now = self._clock()
            self._checks_since_prune += 1
            if self._checks_since_prune >= self._prune_interval:
                self._prune_locked(now)

            hits = self._hits.setdefault(key, deque())

            cutoff = now - window
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) < limit:
                hits.append(now)
                return RateLimitDecision(
                    allowed=True,
                    retry_after_seconds=None,
                    remaining=limit - len(hits),
                    limit=limit,
                )

            retry_after = max(1, math.ceil(hits[0] + window - now))
            return RateLimitDecision(
                allowed=False,
                retry_after_seconds=retry_after,
                remaining=0,
                limit=limit,
            )

    def _prune_locked(self, now: float) -> int:
        cutoff = now - self._config.window_seconds
        stale = [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        self._checks_since_prune = 0
        if stale:
            logger.debug("Rate limiter pruned %d idle keys", len(stale))
        return len(stale)

    def prune(self) -> int:
        """Drop keys with no requests inside the window. Returns keys removed."""
        with self._lock:
            return self._prune_locked(self._clock())

    def reset(self) -> None:
        """Forget all recorded requests (useful for testing)."""
        with self._lock:
            self._hits.clear()
