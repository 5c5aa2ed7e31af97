"""Tests for the sender management API (/v1/webhooks, /v1/events).

Deliveries go through a real RetryScheduler and deliver_webhook backed by
httpx.MockTransport, with backoff sleeps replaced by a no-op.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from xtwebhook.api.main import create_sender_app
from xtwebhook.config import DeliveryConfig
from xtwebhook.services.webhooks.delivery_log import InMemoryDeliveryLog
from xtwebhook.services.webhooks.signing import HEADER_SIGNATURE, HEADER_TIMESTAMP, verify_request

KEY_A = "key-tenant-a"
KEY_B = "key-tenant-b"
HEADERS_A = {"X-XTSystems-API-Key": KEY_A}
HEADERS_B = {"X-XTSystems-API-Key": KEY_B}


class Receiver:
    """MockTransport handler standing in for subscriber endpoints."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text="received")


async def _no_sleep(delay: float) -> None:
    return None


def _app(receiver: Receiver, log: InMemoryDeliveryLog | None = None) -> FastAPI:
    return create_sender_app(
        config=DeliveryConfig(api_keys={KEY_A: "tenant-a", KEY_B: "tenant-b"}),
        delivery_log=log or InMemoryDeliveryLog(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(receiver)),
        sleep=_no_sleep,
    )


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
def delivery_log() -> InMemoryDeliveryLog:
    return InMemoryDeliveryLog()


@pytest.fixture
def client(receiver: Receiver, delivery_log: InMemoryDeliveryLog) -> TestClient:
    return TestClient(_app(receiver, delivery_log))


def _create(client: TestClient, headers: dict[str, str] = HEADERS_A, **body: Any) -> Any:
    payload: dict[str, Any] = {
        "url": "https://hooks.example.com/a",
        "events": ["ticket.created"],
    }
    payload.update(body)
    return client.post("/v1/webhooks", json=payload, headers=headers)


class TestAuthentication:
    """API key authentication."""

    def test_missing_key_is_401(self, client: TestClient) -> None:
        response = client.get("/v1/webhooks")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert response.json()["message"] == "Missing API key"

    def test_unknown_key_is_401(self, client: TestClient) -> None:
        response = client.get("/v1/webhooks", headers={"X-XTSystems-API-Key": "nope"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid API key"

    def test_bearer_token_accepted(self, client: TestClient) -> None:
        response = client.get("/v1/webhooks", headers={"Authorization": f"Bearer {KEY_A}"})

        assert response.status_code == 200

    def test_health_needs_no_key(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["service"] == "xtwebhook-sender"


class TestWebhookCrud:
    """Subscription CRUD through the API."""

    def test_create_returns_generated_secret_once(self, client: TestClient) -> None:
        response = _create(client, name="Ops")

        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "Ops"
        assert body["events"] == ["ticket.created"]
        assert body["retry_limit"] == 3
        assert len(body["secret"]) == 64

        fetched = client.get(f"/v1/webhooks/{body['id']}", headers=HEADERS_A).json()
        assert "secret" not in fetched

    def test_create_with_supplied_secret_does_not_echo_it(self, client: TestClient) -> None:
        response = _create(client, secret="my-secret")

        assert response.status_code == 201
        assert "secret" not in response.json()
        assert "my-secret" not in response.text

    def test_list_is_tenant_scoped(self, client: TestClient) -> None:
        _create(client)
        _create(client, headers=HEADERS_B)

        listed = client.get("/v1/webhooks", headers=HEADERS_A).json()

        assert len(listed) == 1

    def test_other_tenant_gets_404(self, client: TestClient) -> None:
        webhook_id = _create(client).json()["id"]

        response = client.get(f"/v1/webhooks/{webhook_id}", headers=HEADERS_B)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_duplicate_name_is_409(self, client: TestClient) -> None:
        _create(client, name="Ops")

        response = _create(client, name="Ops")

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_invalid_url_is_422(self, client: TestClient) -> None:
        response = _create(client, url="ftp://hooks.example.com")

        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_empty_events_is_422(self, client: TestClient) -> None:
        response = _create(client, events=[])

        assert response.status_code == 422

    def test_non_ascii_custom_header_is_422(self, client: TestClient) -> None:
        response = client.post(
            "/v1/webhooks",
            json={
                "url": "https://hooks.example.com/a",
                "events": ["ticket.created"],
                "headers": {"X-Team": "\u00c9quipe"},
            },
            headers=HEADERS_A,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"
        assert client.get("/v1/webhooks", headers=HEADERS_A).json() == []

    def test_non_positive_retry_limit_is_422(self, client: TestClient) -> None:
        response = _create(client, retry_limit=0)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_patch_updates_supplied_fields(self, client: TestClient) -> None:
        created = _create(client, name="Ops").json()

        response = client.patch(
            f"/v1/webhooks/{created['id']}",
            json={"active": False, "events": ["ticket.closed", "ticket.created"]},
            headers=HEADERS_A,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["active"] is False
        assert body["events"] == ["ticket.closed", "ticket.created"]
        assert body["name"] == "Ops"
        assert body["url"] == created["url"]

    def test_delete(self, client: TestClient) -> None:
        webhook_id = _create(client).json()["id"]

        response = client.delete(f"/v1/webhooks/{webhook_id}", headers=HEADERS_A)

        assert response.status_code == 204
        assert client.get(f"/v1/webhooks/{webhook_id}", headers=HEADERS_A).status_code == 404

    def test_delete_other_tenant_is_404(self, client: TestClient) -> None:
        webhook_id = _create(client).json()["id"]

        response = client.delete(f"/v1/webhooks/{webhook_id}", headers=HEADERS_B)

        assert response.status_code == 404


class TestTestDeliveryAndHistory:
    """POST /v1/webhooks/{id}/test and GET /v1/webhooks/{id}/deliveries."""

    def test_test_delivery_is_signed_with_subscription_secret(
        self, client: TestClient, receiver: Receiver
    ) -> None:
        webhook_id = _create(client, secret="sub-secret").json()["id"]

        response = client.post(f"/v1/webhooks/{webhook_id}/test", headers=HEADERS_A)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["delivery"]["outcome"] == "delivered"
        assert body["delivery"]["event_type"] == "webhook.test"

        request = receiver.requests[0]
        timestamp = int(request.headers[HEADER_TIMESTAMP])
        verify_request(
            "sub-secret",
            request.content,
            request.headers[HEADER_SIGNATURE],
            request.headers[HEADER_TIMESTAMP],
            now=timestamp,
        )
        assert json.loads(request.content)["event_type"] == "webhook.test"

    def test_test_delivery_with_custom_data(
        self, client: TestClient, receiver: Receiver
    ) -> None:
        webhook_id = _create(client).json()["id"]

        client.post(
            f"/v1/webhooks/{webhook_id}/test",
            json={"data": {"hello": "world"}},
            headers=HEADERS_A,
        )

        assert json.loads(receiver.requests[0].content)["data"] == {"hello": "world"}

    def test_failed_test_delivery_reports_exhausted(self) -> None:
        receiver = Receiver(status_code=503)
        client = TestClient(_app(receiver))
        webhook_id = _create(client, retry_limit=2).json()["id"]

        response = client.post(f"/v1/webhooks/{webhook_id}/test", headers=HEADERS_A)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["delivery"]["outcome"] == "exhausted"
        assert len(receiver.requests) == 2

    def test_test_unknown_webhook_is_404(self, client: TestClient) -> None:
        response = client.post("/v1/webhooks/missing/test", headers=HEADERS_A)

        assert response.status_code == 404

    def test_delivery_history(self, client: TestClient) -> None:
        webhook_id = _create(client).json()["id"]
        client.post(f"/v1/webhooks/{webhook_id}/test", headers=HEADERS_A)

        response = client.get(f"/v1/webhooks/{webhook_id}/deliveries", headers=HEADERS_A)

        assert response.status_code == 200
        history = response.json()
        assert len(history) == 1
        assert history[0]["webhook_id"] == webhook_id
        assert history[0]["response_status"] == 200
        assert history[0]["terminal"] is True

    def test_history_of_other_tenant_is_404(self, client: TestClient) -> None:
        webhook_id = _create(client).json()["id"]

        response = client.get(f"/v1/webhooks/{webhook_id}/deliveries", headers=HEADERS_B)

        assert response.status_code == 404


class TestEmitEvents:
    """POST /v1/events.

    Fan-out runs as a task on the server loop, so tests that check deliveries
    enter the client as a context manager and assert after shutdown drained it.
    """

    def test_event_is_accepted_and_delivered(
        self, receiver: Receiver, delivery_log: InMemoryDeliveryLog
    ) -> None:
        with TestClient(_app(receiver, delivery_log)) as client:
            _create(client)
            _create(client, url="https://hooks.example.com/b")
            _create(client, url="https://hooks.example.com/c", events=["asset.created"])

            response = client.post(
                "/v1/events",
                json={"event_type": "ticket.created", "data": {"id": 77}},
                headers=HEADERS_A,
            )

        assert response.status_code == 202
        assert response.json() == {
            "accepted": True,
            "event_type": "ticket.created",
            "subscriptions": 2,
        }
        assert sorted(str(r.url) for r in receiver.requests) == [
            "https://hooks.example.com/a",
            "https://hooks.example.com/b",
        ]
        assert len(delivery_log.terminal_records()) == 2

    def test_shutdown_drains_in_flight_fan_out(self, delivery_log: InMemoryDeliveryLog) -> None:
        receiver = Receiver(status_code=500)
        app = _app(receiver, delivery_log)
        with TestClient(app) as client:
            _create(client, retry_limit=3)
            client.post(
                "/v1/events",
                json={"event_type": "ticket.created", "data": {}},
                headers=HEADERS_A,
            )

        assert app.state.dispatcher.pending_count == 0
        assert len(receiver.requests) == 3
        assert [r.outcome.value for r in delivery_log.terminal_records()] == ["exhausted"]

    def test_event_without_subscribers(self, client: TestClient, receiver: Receiver) -> None:
        response = client.post(
            "/v1/events",
            json={"event_type": "ticket.created", "data": {}},
            headers=HEADERS_A,
        )

        assert response.status_code == 202
        assert response.json()["subscriptions"] == 0
        assert receiver.requests == []

    def test_events_do_not_cross_tenants(self, client: TestClient, receiver: Receiver) -> None:
        _create(client, headers=HEADERS_B)

        response = client.post(
            "/v1/events",
            json={"event_type": "ticket.created", "data": {}},
            headers=HEADERS_A,
        )

        assert response.json()["subscriptions"] == 0
        assert receiver.requests == []

    def test_failed_delivery_does_not_affect_response(
        self, delivery_log: InMemoryDeliveryLog
    ) -> None:
        receiver = Receiver(status_code=500)
        with TestClient(_app(receiver, delivery_log)) as client:
            _create(client)

            response = client.post(
                "/v1/events",
                json={"event_type": "ticket.created", "data": {}},
                headers=HEADERS_A,
            )

        assert response.status_code == 202
        assert response.json()["subscriptions"] == 1
        assert delivery_log.terminal_records()[0].outcome.value == "exhausted"

    def test_missing_event_type_is_422(self, client: TestClient) -> None:
        response = client.post("/v1/events", json={"data": {}}, headers=HEADERS_A)

        assert response.status_code == 422
