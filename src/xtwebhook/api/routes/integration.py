"""Receiver integration endpoints.

GET /webhooks/config describes how XTSystems should call this receiver.
POST /webhooks/register subscribes this receiver on the XTSystems
management API using the configured shared secret.

Neither endpoint ever returns the shared secret.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from xtwebhook.api.errors import HttpError
from xtwebhook.config import GatewayConfig
from xtwebhook.errors import ConfigError, UpstreamError
from xtwebhook.services.notifications.formatters import SUPPORTED_EVENTS
from xtwebhook.services.webhooks.signing import (
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    SIGNATURE_ALGORITHM,
)
from xtwebhook.services.xtsystems_client import XTSystemsClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Integration"])


class RegisterRequest(BaseModel):
    """Body for POST /webhooks/register (all fields optional)."""

    webhook_url: str | None = Field(default=None, description="Public URL of this receiver")
    events: list[str] | None = Field(default=None, description="Events to subscribe to")


class RegisterResponse(BaseModel):
    success: bool
    webhook_id: str
    message: str


def _receiver_url(request: Request, config: GatewayConfig) -> str:
    base = str(request.base_url).rstrip("/")
    return f"{base}{config.webhook_path}"


@router.get("/config")
def get_webhook_config(request: Request) -> dict[str, Any]:
    """Describe the receiver endpoint, events, channel map and signing scheme."""
    config: GatewayConfig = request.app.state.gateway_config
    return {
        "webhook_url": _receiver_url(request, config),
        "supported_events": list(SUPPORTED_EVENTS),
        "discord_channels": config.channel_map.as_dict(),
        "monitor_channels": list(config.channel_map.monitor_channels),
        "security": {
            "signature_header": HEADER_SIGNATURE.lower(),
            "timestamp_header": HEADER_TIMESTAMP.lower(),
            "algorithm": SIGNATURE_ALGORITHM,
            "freshness_window_seconds": config.freshness_window_seconds,
        },
    }


@router.post("/register", response_model=RegisterResponse)
async def register_webhook(
    request: Request,
    body: RegisterRequest | None = None,
) -> RegisterResponse:
    """Register this receiver as a subscription on XTSystems.

    Raises:
        HttpError: 502 registration_failed if XTSystems is unreachable,
            rejects the request, or no API key is configured.
    """
    config: GatewayConfig = request.app.state.gateway_config
    client: XTSystemsClient = request.app.state.xtsystems_client
    body = body or RegisterRequest()

    url = body.webhook_url or _receiver_url(request, config)
    try:
        created = await client.register_webhook(
            url=url,
            secret=config.webhook_secret,
            events=body.events,
        )
    except UpstreamError as e:
        logger.error(
            "Error registering webhook in XTSystems: %s",
            e,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        details: dict[str, Any] = {"upstream_status": e.status_code}
        if e.details is not None:
            details["upstream"] = e.details
        raise HttpError(
            status_code=502,
            error="registration_failed",
            message="Failed to register webhook",
            details=details,
        ) from e
    except ConfigError as e:
        raise HttpError(
            status_code=502,
            error="registration_failed",
            message=str(e),
        ) from e

    return RegisterResponse(
        success=True,
        webhook_id=str(created["id"]),
        message="Webhook registered successfully in XTSystems",
    )
