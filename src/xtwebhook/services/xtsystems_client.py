"""Client for the XTSystems webhook management API.

Used by the receiver to register itself as a webhook subscription and by
the CLI for list/test/delete. Authenticates with "Authorization: Bearer
<api key>".

NEVER log the API key or the webhook secret.
"""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from xtwebhook.errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_REGISTRATION_EVENTS: Final[tuple[str, ...]] = (
    "ticket.created",
    "ticket.updated",
    "ticket.closed",
)
REGISTRATION_NAME: Final[str] = "Discord Bot Integration"


class XTSystemsClient:
    """Async client for /v1/webhooks on an XTSystems deployment.

    Args:
        api_url: Base URL, e.g. "http://localhost:20437".
        api_key: Management API key.
        http_client: Optional httpx.AsyncClient for dependency injection (testing).
        timeout_seconds: Per-request timeout when creating an own client.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ConfigError("XTSYSTEMS_API_KEY is not configured")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Execute one request and return the decoded JSON body (None if empty).

        Raises:
            ConfigError: If no API key is configured.
            UpstreamError: On network failure or non-2xx response.
        """
        headers = self._headers()
        url = f"{self._api_url}{path}"

        client = self._http_client
        should_close = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            should_close = True

        try:
            response = await client.request(method, url, json=json_body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("XTSystems %s %s failed: %s", method, path, type(e).__name__)
            raise UpstreamError(f"XTSystems API unreachable: {type(e).__name__}") from e
        finally:
            if should_close:
                await client.aclose()

        if response.status_code >= 400:
            details: Any
            try:
                details = response.json()
            except ValueError:
                details = response.text[:500]
            logger.warning("XTSystems %s %s returned HTTP %d", method, path, response.status_code)
            raise UpstreamError(
                f"XTSystems API returned HTTP {response.status_code}",
                status_code=response.status_code,
                details=details,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("XTSystems API returned invalid JSON") from e

    async def register_webhook(
        self,
        url: str,
        secret: str,
        events: list[str] | None = None,
        name: str = REGISTRATION_NAME,
    ) -> dict[str, Any]:
        """Create a subscription pointing at url.

        Returns:
            The created webhook as returned by XTSystems (includes "id").
        """
        payload = {
            "name": name,
            "url": url,
            "events": list(events) if events else list(DEFAULT_REGISTRATION_EVENTS),
            "active": True,
            "secret": secret,
            "headers": {"Content-Type": "application/json"},
        }
        created = await self._request("POST", "/v1/webhooks", payload)
        if not isinstance(created, dict) or "id" not in created:
            raise UpstreamError("XTSystems API response is missing the webhook id")
        logger.info("Registered webhook %s for %s", created["id"], url)
        return created

    async def list_webhooks(self) -> list[dict[str, Any]]:
        result = await self._request("GET", "/v1/webhooks")
        return result if isinstance(result, list) else []

    async def test_webhook(self, webhook_id: str) -> dict[str, Any]:
        result = await self._request("POST", f"/v1/webhooks/{webhook_id}/test", {})
        return result if isinstance(result, dict) else {}

    async def delete_webhook(self, webhook_id: str) -> None:
        await self._request("DELETE", f"/v1/webhooks/{webhook_id}")
