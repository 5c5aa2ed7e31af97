"""Webhook retry/backoff for xtwebhook.

Policy:
- Attempts 1 through retry_limit inclusive
- Between attempt k and k+1 (k zero-based), wait base * 2^k
- Stop on the first response with status < 400
- Stop immediately on 401 (a bad secret will not fix itself)
- After the last failed attempt, append one terminal "exhausted" record with
  response_status = 0

Backoff schedule (default base=1s, retry_limit=3):
  Attempt 1: immediate
  Attempt 2: 1s later
  Attempt 3: 2s later

No jitter and no cap by default (deterministic for testing). Both are
available as options.

Every attempt is appended to the delivery log before the scheduler moves on.
Failures are returned as records, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Final

import httpx

from xtwebhook.errors import DeliveryError, DeliveryLogError
from xtwebhook.services.webhooks.delivery import (
    DeliveryResult,
    build_delivery_headers,
    deliver_webhook,
)
from xtwebhook.services.webhooks.delivery_log import (
    UNDELIVERABLE_STATUS,
    DeliveryAttempt,
    DeliveryLog,
    DeliveryOutcome,
    utc_now_iso,
)
from xtwebhook.services.webhooks.envelope import EventEnvelope
from xtwebhook.services.webhooks.registry import WebhookSubscription
from xtwebhook.services.webhooks.signing import sign_webhook_payload

logger = logging.getLogger(__name__)

DEFAULT_BASE_SECONDS: Final[float] = 1
AUTH_REJECTED_STATUS: Final[int] = 401

DeliverFn = Callable[..., Awaitable[DeliveryResult]]
SleepFn = Callable[[float], Awaitable[None]]


def compute_backoff_seconds(
    attempt_index: int,
    base_seconds: float = DEFAULT_BASE_SECONDS,
    cap_seconds: float | None = None,
    jitter: bool = False,
) -> float:
    """Compute the delay after a failed attempt.

    Args:
        attempt_index: Zero-based index of the failed attempt (0 = after the first).
        base_seconds: Backoff unit (default 1).
        cap_seconds: Optional ceiling on the delay.
        jitter: If True, add random jitter up to 10% of delay.

    Returns:
        Delay in seconds.

    Example:
        >>> compute_backoff_seconds(0)
        1
        >>> compute_backoff_seconds(3)
        8
    """
    if attempt_index < 0:
        return 0

    delay = base_seconds * (2**attempt_index)
    if cap_seconds is not None:
        delay = min(delay, cap_seconds)

    if jitter:
        delay += delay * 0.1 * random.random()

    return delay


def get_retry_schedule(
    retry_limit: int,
    base_seconds: float = DEFAULT_BASE_SECONDS,
    cap_seconds: float | None = None,
) -> list[float]:
    """Delays between consecutive attempts (retry_limit - 1 entries)."""
    return [
        compute_backoff_seconds(i, base_seconds, cap_seconds, jitter=False)
        for i in range(max(0, retry_limit - 1))
    ]


class RetryScheduler:
    """Runs one delivery sequence for one subscription.

    Args:
        delivery_log: Where every attempt is appended.
        deliver: Single-attempt delivery function (deliver_webhook signature).
        sleep: Awaitable delay between attempts.
        clock: Unix time source used for signing timestamps.
        base_seconds: Backoff unit.
        cap_seconds: Optional backoff ceiling.
        jitter: Add up to 10% random jitter to each delay.
        client: Shared httpx.AsyncClient passed to deliver.
    """

    def __init__(
        self,
        delivery_log: DeliveryLog,
        *,
        deliver: DeliverFn = deliver_webhook,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        base_seconds: float = DEFAULT_BASE_SECONDS,
        cap_seconds: float | None = None,
        jitter: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._log = delivery_log
        self._deliver = deliver
        self._sleep = sleep
        self._clock = clock
        self._base_seconds = base_seconds
        self._cap_seconds = cap_seconds
        self._jitter = jitter
        self._client = client

    @property
    def delivery_log(self) -> DeliveryLog:
        return self._log

    async def _record(self, attempt: DeliveryAttempt) -> None:
        try:
            await asyncio.to_thread(self._log.append, attempt)
        except DeliveryLogError:
            logger.exception(
                "Failed to record delivery attempt %d for webhook %s",
                attempt.attempt_number,
                attempt.webhook_id,
                extra={"webhook_id": attempt.webhook_id, "event_type": attempt.event_type},
            )

    def _make_attempt(
        self,
        subscription: WebhookSubscription,
        envelope: EventEnvelope,
        delivery_id: str,
        attempt_number: int,
        *,
        status: int | None,
        body: str | None,
        outcome: DeliveryOutcome,
        terminal: bool,
    ) -> DeliveryAttempt:
        now = utc_now_iso()
        return DeliveryAttempt(
            delivery_id=delivery_id,
            webhook_id=subscription.webhook_id,
            tenant_id=subscription.tenant_id,
            event_type=envelope.event_type,
            payload=envelope.to_dict(),
            attempt_number=attempt_number,
            response_status=status,
            response_body=body,
            delivered_at=now if outcome == DeliveryOutcome.DELIVERED else None,
            created_at=now,
            outcome=outcome,
            terminal=terminal,
        )

    async def send_with_retry(
        self,
        subscription: WebhookSubscription,
        envelope: EventEnvelope,
        body: bytes | None = None,
        delivery_id: str | None = None,
    ) -> DeliveryAttempt:
        """Deliver an envelope with bounded exponential backoff.

        Args:
            subscription: Destination; its secret, retry_limit, timeout and
                custom headers apply.
            envelope: Event being delivered.
            body: Pre-encoded envelope bytes. Encoded once here if None.
            delivery_id: Id shared by all attempts; generated if None.

        Returns:
            The terminal DeliveryAttempt (delivered, rejected, or exhausted).
        """
        payload = envelope.encode() if body is None else body
        delivery_id = delivery_id or str(uuid.uuid4())
        retry_limit = max(1, subscription.retry_limit)
        log_extra = {"webhook_id": subscription.webhook_id, "event_type": envelope.event_type}
        last_error = "no attempt made"

        for attempt_number in range(1, retry_limit + 1):
            try:
                signature = sign_webhook_payload(subscription.secret, int(self._clock()), payload)
                headers = build_delivery_headers(signature.headers, subscription.custom_headers)
                result = await self._deliver(
                    subscription.url,
                    payload,
                    headers,
                    webhook_id=subscription.webhook_id,
                    attempt_number=attempt_number,
                    timeout_seconds=subscription.timeout_seconds,
                    client=self._client,
                )
            except DeliveryError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Webhook %s attempt %d/%d failed: %s",
                    subscription.webhook_id,
                    attempt_number,
                    retry_limit,
                    last_error,
                    extra=log_extra,
                )
                await self._record(
                    self._make_attempt(
                        subscription,
                        envelope,
                        delivery_id,
                        attempt_number,
                        status=None,
                        body=last_error,
                        outcome=DeliveryOutcome.FAILED,
                        terminal=False,
                    )
                )
            except Exception as e:
                last_error = f"Unexpected {type(e).__name__}: {e}"
                logger.exception(
                    "Webhook %s attempt %d/%d raised unexpectedly",
                    subscription.webhook_id,
                    attempt_number,
                    retry_limit,
                    extra=log_extra,
                )
                await self._record(
                    self._make_attempt(
                        subscription,
                        envelope,
                        delivery_id,
                        attempt_number,
                        status=None,
                        body=last_error,
                        outcome=DeliveryOutcome.FAILED,
                        terminal=False,
                    )
                )
            else:
                if result.success:
                    delivered = self._make_attempt(
                        subscription,
                        envelope,
                        delivery_id,
                        attempt_number,
                        status=result.status_code,
                        body=result.body,
                        outcome=DeliveryOutcome.DELIVERED,
                        terminal=True,
                    )
                    await self._record(delivered)
                    logger.info(
                        "Webhook %s delivered %s on attempt %d",
                        subscription.webhook_id,
                        envelope.event_type,
                        attempt_number,
                        extra=log_extra,
                    )
                    return delivered

                if result.status_code == AUTH_REJECTED_STATUS:
                    rejected = self._make_attempt(
                        subscription,
                        envelope,
                        delivery_id,
                        attempt_number,
                        status=result.status_code,
                        body=result.body,
                        outcome=DeliveryOutcome.REJECTED,
                        terminal=True,
                    )
                    await self._record(rejected)
                    logger.error(
                        "Webhook %s rejected %s signature (HTTP 401); not retrying",
                        subscription.webhook_id,
                        envelope.event_type,
                        extra=log_extra,
                    )
                    return rejected

                last_error = f"HTTP {result.status_code}"
                await self._record(
                    self._make_attempt(
                        subscription,
                        envelope,
                        delivery_id,
                        attempt_number,
                        status=result.status_code,
                        body=result.body,
                        outcome=DeliveryOutcome.FAILED,
                        terminal=False,
                    )
                )

            if attempt_number < retry_limit:
                delay = compute_backoff_seconds(
                    attempt_number - 1,
                    base_seconds=self._base_seconds,
                    cap_seconds=self._cap_seconds,
                    jitter=self._jitter,
                )
                await self._sleep(delay)

        exhausted = self._make_attempt(
            subscription,
            envelope,
            delivery_id,
            retry_limit,
            status=UNDELIVERABLE_STATUS,
            body=last_error,
            outcome=DeliveryOutcome.EXHAUSTED,
            terminal=True,
        )
        await self._record(exhausted)
        logger.error(
            "Webhook %s gave up on %s after %d attempts: %s",
            subscription.webhook_id,
            envelope.event_type,
            retry_limit,
            last_error,
            extra=log_extra,
        )
        return exhausted
