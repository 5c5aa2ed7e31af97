"""Tests for GET /health on both apps."""

from __future__ import annotations

from datetime import datetime

from fastapi.testclient import TestClient

from xtwebhook.api.main import create_gateway_app, create_sender_app
from xtwebhook.config import DeliveryConfig, GatewayConfig
from xtwebhook.services.webhooks.delivery_log import InMemoryDeliveryLog


class TestHealthEndpoint:
    """Test suite for health endpoint."""

    def test_gateway_health_without_bot_token(self) -> None:
        client = TestClient(create_gateway_app(config=GatewayConfig(webhook_secret="s")))

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "xtsystems-discord-bot"
        assert body["notifier"] == "disabled"
        datetime.fromisoformat(body["timestamp"])

    def test_gateway_health_with_bot_token(self) -> None:
        config = GatewayConfig(webhook_secret="s", discord_token="bot-token")
        client = TestClient(create_gateway_app(config=config))

        body = client.get("/health").json()

        assert body["notifier"] == "ready"
        assert "bot-token" not in str(body)

    def test_sender_health_omits_notifier(self) -> None:
        app = create_sender_app(config=DeliveryConfig(), delivery_log=InMemoryDeliveryLog())
        client = TestClient(app)

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["service"] == "xtwebhook-sender"
        assert "notifier" not in body

    def test_request_id_is_echoed(self) -> None:
        client = TestClient(create_gateway_app(config=GatewayConfig(webhook_secret="s")))

        response = client.get("/health", headers={"X-Request-Id": "trace-me"})

        assert response.headers["X-Request-Id"] == "trace-me"

    def test_request_id_generated_when_absent(self) -> None:
        client = TestClient(create_gateway_app(config=GatewayConfig(webhook_secret="s")))

        response = client.get("/health")

        assert len(response.headers["X-Request-Id"]) == 36
