"""Outbound webhook services for xtwebhook.

Provides HMAC signing, single-attempt delivery, retry/backoff, the
subscription registry, the delivery log and the event dispatcher.
"""

from xtwebhook.services.webhooks.dispatcher import EventDispatcher
from xtwebhook.services.webhooks.envelope import EventEnvelope, build_envelope
from xtwebhook.services.webhooks.registry import WebhookRegistry, WebhookSubscription
from xtwebhook.services.webhooks.retry import RetryScheduler, compute_backoff_seconds
from xtwebhook.services.webhooks.signing import sign_webhook_payload, verify_request

__all__ = [
    "EventDispatcher",
    "EventEnvelope",
    "RetryScheduler",
    "WebhookRegistry",
    "WebhookSubscription",
    "build_envelope",
    "compute_backoff_seconds",
    "sign_webhook_payload",
    "verify_request",
]
