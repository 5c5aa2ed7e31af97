"""Single-attempt outbound webhook delivery for xtwebhook.

One POST of already-signed bytes to a subscriber URL. No retry logic here;
RetryScheduler owns attempts and backoff.

Outcome contract:
- Any HTTP response returns a DeliveryResult; status >= 400 is a failed
  delivery (DeliveryResult.success is False) even though the network worked.
- Exceeding the timeout raises DeliveryTimeoutError.
- Connection refused, DNS and other transport faults raise DeliveryNetworkError.
- A target URL that httpx cannot use raises PermanentDeliveryError.

Each attempt runs in a "webhook.delivery" OpenTelemetry span. Span
attributes never include secrets, signature headers, query strings, or
userinfo from the target URL.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final
from urllib.parse import urlsplit, urlunsplit

import httpx
from opentelemetry import trace

from xtwebhook.errors import (
    DeliveryNetworkError,
    DeliveryTimeoutError,
    PermanentDeliveryError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
DEFAULT_USER_AGENT: Final[str] = "XTSystems-Webhook/1.0"
RESPONSE_BODY_LIMIT: Final[int] = 2000


@dataclass(frozen=True)
class DeliveryResult:
    """Result of a delivery attempt that reached the target.

    Attributes:
        status_code: HTTP status code from target.
        body: Response body, truncated to RESPONSE_BODY_LIMIT characters.
        duration_ms: Request duration in milliseconds.
    """

    status_code: int
    body: str
    duration_ms: int

    @property
    def success(self) -> bool:
        """Status below 400 counts as delivered."""
        return self.status_code < 400


def truncate_body(text: str, limit: int = RESPONSE_BODY_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit]


def _sanitize_url_for_span(url: str) -> str:
    """Strip userinfo, querystring and fragment from a URL.

    Returns:
        scheme://host[:port]/path, or "unknown" if malformed.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if not host:
            return "unknown"
        port = f":{parts.port}" if parts.port else ""
        safe_url = urlunsplit((parts.scheme, f"{host}{port}", parts.path, "", ""))
        return safe_url if safe_url else "unknown"
    except ValueError:
        return "unknown"


def _get_host_from_url(url: str) -> str:
    """Extract host[:port] from URL (never includes userinfo)."""
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if not host:
            return "unknown"
        port = f":{parts.port}" if parts.port else ""
        return f"{host}{port}"
    except ValueError:
        return "unknown"


def build_delivery_headers(
    signature_headers: Mapping[str, str],
    custom_headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge default, subscriber-specific and signature headers.

    Custom headers may override Content-Type and User-Agent but never the
    signature or timestamp headers.
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": DEFAULT_USER_AGENT,
    }
    reserved = {name.lower() for name in signature_headers}
    for name, value in (custom_headers or {}).items():
        if name.lower() in reserved:
            continue
        headers[name] = value
    headers.update(signature_headers)
    return headers


async def _post(
    client: httpx.AsyncClient,
    url: str,
    body: bytes,
    headers: dict[str, str],
    timeout_seconds: float,
) -> httpx.Response:
    return await asyncio.wait_for(
        client.post(url, content=body, headers=headers, timeout=timeout_seconds),
        timeout=timeout_seconds,
    )


async def deliver_webhook(
    url: str,
    body: bytes,
    headers: Mapping[str, str],
    *,
    webhook_id: str = "",
    attempt_number: int = 1,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    client: httpx.AsyncClient | None = None,
) -> DeliveryResult:
    """POST a signed body to the target URL once.

    Args:
        url: Target webhook URL.
        body: Canonical JSON bytes (the exact bytes that were signed).
        headers: Full header set, including signature headers.
        webhook_id: Subscription id (span/log correlation only).
        attempt_number: 1-based attempt number (span/log correlation only).
        timeout_seconds: Upper bound on the whole attempt.
        client: Shared AsyncClient; a short-lived one is created if None.

    Returns:
        DeliveryResult for any HTTP response.

    Raises:
        DeliveryTimeoutError: The attempt exceeded timeout_seconds.
        DeliveryNetworkError: Transport-level failure.
        PermanentDeliveryError: The URL cannot be requested at all.
    """
    tracer = trace.get_tracer("xtwebhook.webhooks")

    with tracer.start_as_current_span(
        "webhook.delivery",
        attributes={
            "xtw.webhook_id": webhook_id,
            "xtw.delivery_attempt": attempt_number,
            "http.method": "POST",
            "http.url": _sanitize_url_for_span(url),
            "net.peer.name": _get_host_from_url(url),
        },
    ) as span:
        start_time = time.monotonic()
        request_headers = dict(headers)

        try:
            if client is not None:
                response = await _post(client, url, body, request_headers, timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=timeout_seconds) as own_client:
                    response = await _post(own_client, url, body, request_headers, timeout_seconds)

        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            span.set_status(trace.StatusCode.ERROR, "Timeout")
            span.record_exception(e)
            raise DeliveryTimeoutError(f"Timeout after {timeout_seconds}s") from e

        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            span.set_status(trace.StatusCode.ERROR, "Invalid target URL")
            span.record_exception(e)
            raise PermanentDeliveryError(f"Invalid target URL: {e}") from e

        except httpx.HTTPError as e:
            span.set_status(trace.StatusCode.ERROR, f"Connection error: {type(e).__name__}")
            span.record_exception(e)
            raise DeliveryNetworkError(f"Connection error: {e}") from e

        finally:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            span.set_attribute("xtw.delivery_duration_ms", duration_ms)

        result = DeliveryResult(
            status_code=response.status_code,
            body=truncate_body(response.text),
            duration_ms=duration_ms,
        )
        span.set_attribute("http.status_code", result.status_code)

        if not result.success:
            span.set_status(
                trace.StatusCode.ERROR,
                f"Webhook delivery failed: HTTP {result.status_code}",
            )
            logger.info(
                "Webhook %s attempt %d got HTTP %d",
                webhook_id,
                attempt_number,
                result.status_code,
                extra={"webhook_id": webhook_id},
            )

        return result
