"""Tests for the event dispatcher fan-out.

Covers:
- Concurrent fan-out with per-subscription retry outcomes
- Failing branches never delay or cancel succeeding ones
- Tenant/event matching and inactive subscriptions
- One encoding per dispatch, signed per subscription
- Fire-and-forget dispatch() and drain()
- Single-subscription test deliveries
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from xtwebhook.errors import NotFoundError
from xtwebhook.services.webhooks.delivery import DeliveryResult
from xtwebhook.services.webhooks.delivery_log import DeliveryOutcome, InMemoryDeliveryLog
from xtwebhook.services.webhooks.dispatcher import TEST_EVENT_TYPE, EventDispatcher
from xtwebhook.services.webhooks.registry import CreateWebhookInput, WebhookRegistry
from xtwebhook.services.webhooks.retry import RetryScheduler
from xtwebhook.services.webhooks.signing import HEADER_SIGNATURE, HEADER_TIMESTAMP, verify_request

NOW = 1_704_067_200
TENANT = "tenant-a"


class UrlDeliver:
    """Fake deliver_webhook answering by target URL.

    URLs in failing get 500 every time, URLs in crashing raise RuntimeError,
    everything else gets 200.
    """

    def __init__(self, failing: set[str] = frozenset(), crashing: set[str] = frozenset()) -> None:
        self.failing = failing
        self.crashing = crashing
        self.calls: list[dict[str, Any]] = []

    async def __call__(
        self, url: str, body: bytes, headers: dict[str, str], **kwargs: Any
    ) -> DeliveryResult:
        self.calls.append({"url": url, "body": body, "headers": dict(headers)})
        await asyncio.sleep(0)
        if url in self.crashing:
            raise RuntimeError("unexpected bug")
        status = 500 if url in self.failing else 200
        return DeliveryResult(status_code=status, body="", duration_ms=1)


async def _no_sleep(delay: float) -> None:
    return None


def _setup(
    deliver: UrlDeliver,
    sleep: Any = _no_sleep,
) -> tuple[EventDispatcher, WebhookRegistry, InMemoryDeliveryLog]:
    registry = WebhookRegistry()
    log = InMemoryDeliveryLog()
    scheduler = RetryScheduler(log, deliver=deliver, sleep=sleep, clock=lambda: NOW)
    return EventDispatcher(registry, scheduler, clock=lambda: NOW), registry, log


def _subscribe(
    registry: WebhookRegistry,
    url: str,
    events: list[str] | None = None,
    tenant_id: str = TENANT,
    **kwargs: Any,
) -> Any:
    return registry.create(
        tenant_id,
        CreateWebhookInput(
            url=url,
            events=events or ["ticket.created"],
            secret=f"secret-for-{url}",
            retry_limit=3,
            **kwargs,
        ),
    )


class TestDispatchAndWait:
    """Tests for EventDispatcher.dispatch_and_wait()."""

    def test_mixed_outcomes_across_five_subscriptions(self) -> None:
        urls = [f"https://hooks.example.com/{i}" for i in range(5)]
        deliver = UrlDeliver(failing={urls[1], urls[3]})
        dispatcher, registry, log = _setup(deliver)
        for url in urls:
            _subscribe(registry, url)

        results = asyncio.run(dispatcher.dispatch_and_wait("ticket.created", {"id": 1}, TENANT))

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["delivered", "delivered", "delivered", "exhausted", "exhausted"]
        terminal = log.terminal_records()
        assert len(terminal) == 5
        calls_per_url = {url: sum(1 for c in deliver.calls if c["url"] == url) for url in urls}
        assert calls_per_url == {urls[0]: 1, urls[1]: 3, urls[2]: 1, urls[3]: 3, urls[4]: 1}

    def test_failing_branches_do_not_delay_successes(self) -> None:
        """Successful deliveries finish while failing ones are still backing off."""
        urls = [f"https://hooks.example.com/{i}" for i in range(5)]
        deliver = UrlDeliver(failing={urls[0], urls[4]})

        async def scenario() -> tuple[int, list[Any]]:
            release = asyncio.Event()

            async def blocked_sleep(delay: float) -> None:
                await release.wait()

            dispatcher, registry, log = _setup(deliver, sleep=blocked_sleep)
            for url in urls:
                _subscribe(registry, url)

            task = asyncio.create_task(
                dispatcher.dispatch_and_wait("ticket.created", {"id": 1}, TENANT)
            )
            for _ in range(500):
                await asyncio.sleep(0.01)
                if len(log.terminal_records()) == 3:
                    break
            delivered_while_blocked = len(log.terminal_records())
            release.set()
            return delivered_while_blocked, await task

        delivered_while_blocked, results = asyncio.run(scenario())

        assert delivered_while_blocked == 3
        assert len(results) == 5

    def test_unexpected_error_is_logged_as_exhausted(self) -> None:
        """A crashing branch still ends with attempt records and a terminal record."""
        urls = [f"https://hooks.example.com/{i}" for i in range(3)]
        deliver = UrlDeliver(crashing={urls[1]})
        dispatcher, registry, log = _setup(deliver)
        subs = [_subscribe(registry, url) for url in urls]

        results = asyncio.run(dispatcher.dispatch_and_wait("ticket.created", {}, TENANT))

        by_webhook = {r.webhook_id: r for r in results}
        assert len(results) == 3
        assert by_webhook[subs[0].webhook_id].outcome == DeliveryOutcome.DELIVERED
        assert by_webhook[subs[2].webhook_id].outcome == DeliveryOutcome.DELIVERED
        crashed = by_webhook[subs[1].webhook_id]
        assert crashed.outcome == DeliveryOutcome.EXHAUSTED
        assert crashed.response_status == 0
        assert "RuntimeError" in (crashed.response_body or "")
        crash_attempts = log.list_for_webhook(subs[1].webhook_id)
        assert [a.outcome for a in crash_attempts] == [DeliveryOutcome.FAILED] * 3 + [
            DeliveryOutcome.EXHAUSTED
        ]

    def test_no_matching_subscriptions_is_a_no_op(self) -> None:
        deliver = UrlDeliver()
        dispatcher, registry, log = _setup(deliver)
        _subscribe(registry, "https://hooks.example.com/a", events=["asset.created"])

        results = asyncio.run(dispatcher.dispatch_and_wait("ticket.created", {}, TENANT))

        assert results == []
        assert deliver.calls == []
        assert log.attempts == []

    def test_other_tenant_and_inactive_are_skipped(self) -> None:
        deliver = UrlDeliver()
        dispatcher, registry, _ = _setup(deliver)
        _subscribe(registry, "https://hooks.example.com/mine")
        _subscribe(registry, "https://hooks.example.com/theirs", tenant_id="tenant-b")
        _subscribe(registry, "https://hooks.example.com/off", active=False)

        asyncio.run(dispatcher.dispatch_and_wait("ticket.created", {}, TENANT))

        assert [c["url"] for c in deliver.calls] == ["https://hooks.example.com/mine"]

    def test_same_body_signed_per_subscription(self) -> None:
        urls = ["https://hooks.example.com/a", "https://hooks.example.com/b"]
        deliver = UrlDeliver()
        dispatcher, registry, _ = _setup(deliver)
        for url in urls:
            _subscribe(registry, url)

        asyncio.run(dispatcher.dispatch_and_wait("ticket.created", {"id": 9}, TENANT))

        bodies = {c["body"] for c in deliver.calls}
        assert len(bodies) == 1
        envelope = json.loads(bodies.pop())
        assert envelope == {
            "event_type": "ticket.created",
            "data": {"id": 9},
            "company_id": TENANT,
            "timestamp": NOW,
        }
        for call in deliver.calls:
            verify_request(
                f"secret-for-{call['url']}",
                call["body"],
                call["headers"][HEADER_SIGNATURE],
                call["headers"][HEADER_TIMESTAMP],
                now=NOW,
            )
        signatures = {c["headers"][HEADER_SIGNATURE] for c in deliver.calls}
        assert len(signatures) == 2


class TestPublishAndDispatch:
    """Tests for the non-raising entry points."""

    def test_publish_swallows_errors(self) -> None:
        dispatcher, registry, _ = _setup(UrlDeliver())

        def broken_find(event_type: str, tenant_id: str) -> list[Any]:
            raise RuntimeError("registry down")

        registry.find = broken_find  # type: ignore[method-assign]

        assert asyncio.run(dispatcher.publish("ticket.created", {}, TENANT)) == []

    def test_dispatch_returns_task_and_drain_waits(self) -> None:
        deliver = UrlDeliver()
        dispatcher, registry, log = _setup(deliver)
        _subscribe(registry, "https://hooks.example.com/a")

        async def scenario() -> tuple[int, int, int]:
            task = dispatcher.dispatch("ticket.created", {"id": 1}, TENANT)
            pending_before = dispatcher.pending_count
            await dispatcher.drain()
            return pending_before, dispatcher.pending_count, len(task.result())

        pending_before, pending_after, delivered = asyncio.run(scenario())

        assert pending_before == 1
        assert pending_after == 0
        assert delivered == 1
        assert len(log.terminal_records()) == 1

    def test_dispatch_requires_running_loop(self) -> None:
        dispatcher, _, _ = _setup(UrlDeliver())

        with pytest.raises(RuntimeError):
            dispatcher.dispatch("ticket.created", {}, TENANT)


class TestTestWebhook:
    """Tests for EventDispatcher.test_webhook()."""

    def test_delivers_test_event_to_one_subscription(self) -> None:
        deliver = UrlDeliver()
        dispatcher, registry, _ = _setup(deliver)
        target = _subscribe(registry, "https://hooks.example.com/a")
        _subscribe(registry, "https://hooks.example.com/b")

        attempt = asyncio.run(dispatcher.test_webhook(target.webhook_id, TENANT))

        assert attempt.delivered
        assert attempt.event_type == TEST_EVENT_TYPE
        assert [c["url"] for c in deliver.calls] == ["https://hooks.example.com/a"]
        sent = json.loads(deliver.calls[0]["body"])
        assert sent["data"]["webhook_id"] == target.webhook_id

    def test_inactive_subscription_can_be_tested(self) -> None:
        dispatcher, registry, _ = _setup(UrlDeliver())
        target = _subscribe(registry, "https://hooks.example.com/a", active=False)

        attempt = asyncio.run(dispatcher.test_webhook(target.webhook_id, TENANT, {"ping": 1}))

        assert attempt.delivered
        assert attempt.payload["data"] == {"ping": 1}

    def test_unknown_webhook_raises_not_found(self) -> None:
        dispatcher, _, _ = _setup(UrlDeliver())

        with pytest.raises(NotFoundError):
            asyncio.run(dispatcher.test_webhook("missing", TENANT))
