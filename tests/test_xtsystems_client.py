"""Tests for the XTSystems management API client."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from xtwebhook.errors import ConfigError, UpstreamError
from xtwebhook.services.xtsystems_client import XTSystemsClient


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    api_key: str | None = "mgmt-key",
) -> XTSystemsClient:
    return XTSystemsClient(
        "http://xts.test/",
        api_key,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestRegisterWebhook:
    def test_payload_and_auth(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 17, "url": "https://bot/hook"})

        created = asyncio.run(
            _client(handler).register_webhook("https://bot/hook", "shh", events=["alert.triggered"])
        )

        assert created["id"] == 17
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "http://xts.test/v1/webhooks"
        assert request.headers["Authorization"] == "Bearer mgmt-key"
        assert json.loads(request.content) == {
            "name": "Discord Bot Integration",
            "url": "https://bot/hook",
            "events": ["alert.triggered"],
            "active": True,
            "secret": "shh",
            "headers": {"Content-Type": "application/json"},
        }

    def test_missing_id_is_upstream_error(self) -> None:
        client = _client(lambda request: httpx.Response(201, json={"ok": True}))

        with pytest.raises(UpstreamError):
            asyncio.run(client.register_webhook("https://bot/hook", "shh"))

    def test_error_status_carries_details(self) -> None:
        client = _client(lambda request: httpx.Response(400, json={"error": "bad url"}))

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.register_webhook("https://bot/hook", "shh"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"error": "bad url"}

    def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(_client(handler).register_webhook("https://bot/hook", "shh"))

        assert exc_info.value.status_code is None

    def test_no_api_key(self) -> None:
        client = _client(lambda request: httpx.Response(201, json={"id": 1}), api_key=None)

        with pytest.raises(ConfigError):
            asyncio.run(client.register_webhook("https://bot/hook", "shh"))


class TestOtherOperations:
    def test_list_test_delete(self) -> None:
        seen: list[tuple[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            if request.method == "GET":
                return httpx.Response(200, json=[{"id": 1}])
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json={"success": True})

        client = _client(handler)

        assert asyncio.run(client.list_webhooks()) == [{"id": 1}]
        assert asyncio.run(client.test_webhook("1")) == {"success": True}
        assert asyncio.run(client.delete_webhook("1")) is None
        assert seen == [
            ("GET", "/v1/webhooks"),
            ("POST", "/v1/webhooks/1/test"),
            ("DELETE", "/v1/webhooks/1"),
        ]
