"""Event dispatcher (sender side).

Resolves the active subscriptions for an event and fans the delivery out
concurrently through the RetryScheduler. The envelope is built and encoded
once per dispatch; every branch sends the same bytes signed with its own
subscription's secret.

Each branch catches its own failures and turns them into a logged outcome,
so one recipient exhausting its retries never cancels or delays the others.
Emitting code calls dispatch() (fire-and-forget) and never sees delivery
errors.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any, Final

from xtwebhook.services.webhooks.delivery_log import DeliveryAttempt
from xtwebhook.services.webhooks.envelope import EventEnvelope, build_envelope
from xtwebhook.services.webhooks.registry import WebhookRegistry, WebhookSubscription
from xtwebhook.services.webhooks.retry import RetryScheduler

logger = logging.getLogger(__name__)

TEST_EVENT_TYPE: Final[str] = "webhook.test"


class EventDispatcher:
    """Fan-out of events to matching webhook subscriptions.

    Args:
        registry: Source of subscriptions.
        scheduler: Runs one retrying delivery per subscription.
        clock: Unix time source for envelope timestamps.
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        scheduler: RetryScheduler,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._clock = clock
        self._pending: set[asyncio.Task[list[DeliveryAttempt]]] = set()

    @property
    def registry(self) -> WebhookRegistry:
        return self._registry

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _deliver_one(
        self,
        subscription: WebhookSubscription,
        envelope: EventEnvelope,
        body: bytes,
    ) -> DeliveryAttempt | None:
        try:
            return await self._scheduler.send_with_retry(
                subscription, envelope, body=body, delivery_id=str(uuid.uuid4())
            )
        except Exception:
            logger.exception(
                "Unexpected error delivering %s to webhook %s",
                envelope.event_type,
                subscription.webhook_id,
                extra={"webhook_id": subscription.webhook_id, "event_type": envelope.event_type},
            )
            return None

    async def _fan_out(
        self,
        subscriptions: list[WebhookSubscription],
        envelope: EventEnvelope,
    ) -> list[DeliveryAttempt]:
        body = envelope.encode()
        async with asyncio.TaskGroup() as group:
            tasks = [
                group.create_task(self._deliver_one(subscription, envelope, body))
                for subscription in subscriptions
            ]
        return [result for task in tasks if (result := task.result()) is not None]

    async def dispatch_and_wait(
        self,
        event_type: str,
        data: dict[str, Any],
        tenant_id: str,
    ) -> list[DeliveryAttempt]:
        """Deliver an event to every matching subscription and wait for all.

        Returns:
            One terminal DeliveryAttempt per subscription that produced one.
            Empty if no subscription matches.
        """
        subscriptions = self._registry.find(event_type, tenant_id)
        if not subscriptions:
            logger.debug("No webhooks subscribed to %s for tenant %s", event_type, tenant_id)
            return []

        envelope = build_envelope(event_type, data, tenant_id, now=self._clock())
        logger.info(
            "Dispatching %s to %d webhook(s) for tenant %s",
            event_type,
            len(subscriptions),
            tenant_id,
            extra={"event_type": event_type},
        )
        return await self._fan_out(subscriptions, envelope)

    async def publish(
        self,
        event_type: str,
        data: dict[str, Any],
        tenant_id: str,
    ) -> list[DeliveryAttempt]:
        """dispatch_and_wait() that never raises.

        Used for background emission where nobody is left to handle errors.
        """
        try:
            return await self.dispatch_and_wait(event_type, data, tenant_id)
        except Exception:
            logger.exception(
                "Dispatch of %s for tenant %s failed",
                event_type,
                tenant_id,
                extra={"event_type": event_type},
            )
            return []

    def dispatch(
        self,
        event_type: str,
        data: dict[str, Any],
        tenant_id: str,
    ) -> asyncio.Task[list[DeliveryAttempt]]:
        """Schedule fan-out on the running loop and return immediately.

        Must be called from within a running event loop. The returned task
        can be awaited by callers that care; it never raises.
        """
        task = asyncio.get_running_loop().create_task(
            self.publish(event_type, data, tenant_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def test_webhook(
        self,
        webhook_id: str,
        tenant_id: str,
        data: dict[str, Any] | None = None,
    ) -> DeliveryAttempt:
        """Run one dispatch cycle limited to a single subscription.

        The subscription is targeted even if inactive or not subscribed to
        webhook.test.

        Raises:
            NotFoundError: If the webhook does not exist for this tenant.
        """
        subscription = self._registry.get(webhook_id, tenant_id)
        payload = (
            data
            if data is not None
            else {"message": "This is a test webhook from XTSystems", "webhook_id": webhook_id}
        )
        envelope = build_envelope(TEST_EVENT_TYPE, payload, tenant_id, now=self._clock())
        logger.info(
            "Sending test delivery to webhook %s",
            webhook_id,
            extra={"webhook_id": webhook_id, "event_type": TEST_EVENT_TYPE},
        )
        return await self._scheduler.send_with_retry(subscription, envelope)

    async def drain(self) -> None:
        """Wait for all fire-and-forget dispatches started by dispatch()."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
