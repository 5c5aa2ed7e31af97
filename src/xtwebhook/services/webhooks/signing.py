"""Webhook HMAC-SHA256 signing and verification for xtwebhook.

Shared by the sender (outbound deliveries) and the receiver (inbound gateway):
- Signed message: "{timestamp}" + raw_body (no separator)
- Signature: hex digest of HMAC-SHA256(secret, message), prefixed "sha256="

Headers produced:
- X-XTSystems-Timestamp: <unix seconds>
- X-XTSystems-Signature: sha256=<hex>

The raw body is the exact byte sequence on the wire. Never re-serialize a
parsed JSON body before verifying it.

SECURITY: Never log secrets or full signature headers.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Final

from xtwebhook.errors import (
    REASON_BAD_SIGNATURE,
    REASON_MISSING_SIGNATURE,
    REASON_STALE_TIMESTAMP,
    AuthenticationError,
)

HEADER_TIMESTAMP: Final[str] = "X-XTSystems-Timestamp"
HEADER_SIGNATURE: Final[str] = "X-XTSystems-Signature"
SIGNATURE_PREFIX: Final[str] = "sha256="
SIGNATURE_ALGORITHM: Final[str] = "sha256"
DEFAULT_FRESHNESS_WINDOW_SECONDS: Final[int] = 300


@dataclass(frozen=True)
class WebhookSignature:
    """Result of signing a webhook payload.

    Attributes:
        timestamp: Integer seconds (Unix epoch) used in signature.
        signature: Hex digest of HMAC-SHA256 signature (no prefix).
        headers: Dict of headers to include with webhook delivery.
    """

    timestamp: int
    signature: str
    headers: dict[str, str]


def compute_hmac_signature(secret: str, timestamp: int, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature for webhook payload.

    Args:
        secret: Shared secret for HMAC computation.
        timestamp: Integer seconds (Unix epoch).
        payload: Raw bytes of JSON payload body.

    Returns:
        Hex digest of HMAC-SHA256 signature.
    """
    message = str(timestamp).encode("ascii") + payload
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign(secret: str, timestamp: int, payload: bytes) -> str:
    """Return the signature header value ("sha256=<hex>") for a payload."""
    return SIGNATURE_PREFIX + compute_hmac_signature(secret, timestamp, payload)


def sign_webhook_payload(
    secret: str,
    timestamp: int,
    payload: bytes,
) -> WebhookSignature:
    """Sign a webhook payload and build the delivery headers.

    Args:
        secret: Shared secret for HMAC computation.
        timestamp: Integer seconds (Unix epoch).
        payload: Raw bytes of JSON payload body.

    Returns:
        WebhookSignature with timestamp, signature, and headers dict.

    Example:
        >>> sig = sign_webhook_payload("my-secret", 1704067200, b'{"event_type":"test"}')
        >>> sig.headers
        {'X-XTSystems-Timestamp': '1704067200', 'X-XTSystems-Signature': 'sha256=...'}
    """
    signature = compute_hmac_signature(secret, timestamp, payload)

    return WebhookSignature(
        timestamp=timestamp,
        signature=signature,
        headers={
            HEADER_TIMESTAMP: str(timestamp),
            HEADER_SIGNATURE: SIGNATURE_PREFIX + signature,
        },
    )


def verify_webhook_signature(
    secret: str,
    timestamp: int,
    payload: bytes,
    provided_signature: str,
) -> bool:
    """Check a signature in constant time.

    Only the HMAC is checked here; freshness is enforced by verify_request().

    Args:
        secret: Shared secret for HMAC computation.
        timestamp: Integer seconds from the timestamp header.
        payload: Raw bytes of request body.
        provided_signature: Signature header value, with or without "sha256=".

    Returns:
        True if signature matches, False otherwise.
    """
    if provided_signature.startswith(SIGNATURE_PREFIX):
        provided_signature = provided_signature[len(SIGNATURE_PREFIX) :]

    computed = compute_hmac_signature(secret, timestamp, payload)
    return hmac.compare_digest(computed.encode("ascii"), provided_signature.encode("utf-8"))


def is_fresh(
    timestamp: int,
    now: float,
    freshness_window_seconds: int = DEFAULT_FRESHNESS_WINDOW_SECONDS,
) -> bool:
    """True if |now - timestamp| is within the freshness window."""
    return abs(now - timestamp) <= freshness_window_seconds


def verify_request(
    secret: str,
    payload: bytes,
    signature_header: str | None,
    timestamp_header: str | None,
    *,
    now: float | None = None,
    freshness_window_seconds: int = DEFAULT_FRESHNESS_WINDOW_SECONDS,
) -> int:
    """Verify an inbound webhook request. Fails closed.

    Checks run in order: both headers present, timestamp parseable and fresh,
    signature matches.

    Args:
        secret: Shared secret for HMAC computation.
        payload: Raw request body bytes exactly as received.
        signature_header: X-XTSystems-Signature value, or None if absent.
        timestamp_header: X-XTSystems-Timestamp value, or None if absent.
        now: Verifier clock in Unix seconds (defaults to time.time()).
        freshness_window_seconds: Maximum accepted clock skew.

    Returns:
        The verified timestamp.

    Raises:
        AuthenticationError: With reason missing_signature, stale_timestamp,
            or bad_signature.
    """
    if not signature_header or not timestamp_header:
        raise AuthenticationError(REASON_MISSING_SIGNATURE, "Missing signature or timestamp")

    try:
        timestamp = int(timestamp_header.strip())
    except ValueError as e:
        raise AuthenticationError(REASON_STALE_TIMESTAMP, "Timestamp is not an integer") from e

    current = time.time() if now is None else now
    if not is_fresh(timestamp, current, freshness_window_seconds):
        raise AuthenticationError(REASON_STALE_TIMESTAMP, "Timestamp outside freshness window")

    if not verify_webhook_signature(secret, timestamp, payload, signature_header.strip()):
        raise AuthenticationError(REASON_BAD_SIGNATURE, "Invalid signature")

    return timestamp
