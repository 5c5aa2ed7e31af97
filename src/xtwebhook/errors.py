"""Domain exceptions for xtwebhook.

The taxonomy separates receiver-side authentication failures, sender-side
delivery failures (transient vs permanent), registry failures surfaced to the
management caller, and configuration failures raised at startup.

HTTP status mapping lives in xtwebhook.api.errors; nothing here knows about HTTP
responses.
"""

from __future__ import annotations

from typing import Final

REASON_MISSING_SIGNATURE: Final[str] = "missing_signature"
REASON_STALE_TIMESTAMP: Final[str] = "stale_timestamp"
REASON_BAD_SIGNATURE: Final[str] = "bad_signature"


class WebhookError(Exception):
    """Base class for all xtwebhook errors."""


class ConfigError(WebhookError):
    """Raised when configuration values are missing or invalid."""


class AuthenticationError(WebhookError):
    """Raised when an inbound webhook fails signature or timestamp checks.

    Attributes:
        reason: Machine-readable rejection reason (missing_signature,
            stale_timestamp, bad_signature).
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class EnvelopeError(WebhookError):
    """Raised when a verified request body is not a valid event envelope."""


class DeliveryError(WebhookError):
    """Base class for outbound delivery failures."""


class TransientDeliveryError(DeliveryError):
    """Delivery failure that may succeed on a later attempt."""


class DeliveryTimeoutError(TransientDeliveryError):
    """The attempt exceeded its configured timeout."""


class DeliveryNetworkError(TransientDeliveryError):
    """Connection refused, DNS failure, or another transport-level fault."""


class PermanentDeliveryError(DeliveryError):
    """Delivery failure that retrying cannot fix (e.g. malformed target URL)."""


class DeliveryLogError(WebhookError):
    """Raised when a delivery attempt cannot be appended to the log."""


class RegistryError(WebhookError):
    """Base class for subscription registry failures."""


class NotFoundError(RegistryError):
    """Subscription does not exist or belongs to another tenant."""


class ConflictError(RegistryError):
    """Subscription with the same (tenant, name) already exists."""


class ValidationError(RegistryError):
    """Subscription fields are invalid (bad URL, empty event set, ...)."""


class UpstreamError(WebhookError):
    """The XTSystems management API rejected or failed a request.

    Attributes:
        status_code: HTTP status returned upstream, or None if unreachable.
        details: Parsed upstream response body or error text.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details
