"""Notification delivery to destination channels.

Notifier is the seam to the chat platform. DiscordRestNotifier posts
messages through the Discord REST API with httpx; LoggingNotifier only logs
and is used when no bot token is configured.

ChannelFanout sends one notification to many channels concurrently. A
failure on one channel is logged and counted; it never stops the others and
never propagates to the caller.

NEVER log the bot token.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Protocol, runtime_checkable

import httpx

from xtwebhook.errors import ConfigError, UpstreamError
from xtwebhook.services.notifications.formatters import Notification

logger = logging.getLogger(__name__)

DISCORD_API_BASE: Final[str] = "https://discord.com/api/v10"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0

# Discord component type / button style codes
_ACTION_ROW: Final[int] = 1
_BUTTON: Final[int] = 2
_BUTTON_STYLES: Final[dict[str, int]] = {"primary": 1, "secondary": 2, "success": 3, "danger": 4}


@runtime_checkable
class Notifier(Protocol):
    """Sends a rendered notification to one destination channel."""

    async def send(self, channel_id: str, notification: Notification) -> None:
        """Deliver the notification.

        Raises:
            Exception: Any failure; ChannelFanout isolates it per channel.
        """
        ...


def build_discord_message(notification: Notification) -> dict[str, Any]:
    """Render a Notification as a Discord create-message payload."""
    embed: dict[str, Any] = {
        "title": notification.title,
        "description": notification.description,
        "color": notification.color,
        "fields": [
            {"name": f.name, "value": f.value, "inline": f.inline} for f in notification.fields
        ],
        "footer": {"text": notification.footer},
    }
    if notification.timestamp:
        embed["timestamp"] = notification.timestamp

    message: dict[str, Any] = {"embeds": [embed]}
    if notification.buttons:
        message["components"] = [
            {
                "type": _ACTION_ROW,
                "components": [
                    {
                        "type": _BUTTON,
                        "style": _BUTTON_STYLES.get(b.style, _BUTTON_STYLES["secondary"]),
                        "label": b.label,
                        "custom_id": b.custom_id,
                    }
                    for b in notification.buttons
                ],
            }
        ]
    return message


class DiscordRestNotifier:
    """Posts notifications to Discord channels as a bot.

    Args:
        token: Bot token (sent as "Authorization: Bot <token>").
        api_base: Discord API base URL.
        client: Shared AsyncClient; a short-lived one is created per send if None.
        timeout_seconds: Per-request timeout.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DISCORD_API_BASE,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not token:
            raise ConfigError("Discord bot token is required")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def _post(
        self, client: httpx.AsyncClient, channel_id: str, payload: dict[str, Any]
    ) -> httpx.Response:
        return await client.post(
            f"{self._api_base}/channels/{channel_id}/messages",
            json=payload,
            headers={"Authorization": f"Bot {self._token}"},
            timeout=self._timeout_seconds,
        )

    async def send(self, channel_id: str, notification: Notification) -> None:
        payload = build_discord_message(notification)
        try:
            if self._client is not None:
                response = await self._post(self._client, channel_id, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, channel_id, payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Discord request failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"Discord rejected message for channel {channel_id}",
                status_code=response.status_code,
            )


class LoggingNotifier:
    """Notifier that only logs; keeps the receiver usable without a bot token."""

    async def send(self, channel_id: str, notification: Notification) -> None:
        logger.info(
            "Notification for channel %s: %s",
            channel_id,
            notification.title,
            extra={"event_type": notification.event_type},
        )


@dataclass
class FanoutResult:
    """Per-channel outcome of one fan-out."""

    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


class ChannelFanout:
    """Sends one notification to several channels with per-channel isolation."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    async def _send_one(self, channel_id: str, notification: Notification) -> bool:
        try:
            await self._notifier.send(channel_id, notification)
        except Exception:
            logger.exception(
                "Failed to send notification to channel %s",
                channel_id,
                extra={"event_type": notification.event_type},
            )
            return False
        logger.info(
            "Sent notification to channel %s for event %s",
            channel_id,
            notification.event_type,
            extra={"event_type": notification.event_type},
        )
        return True

    async def send(self, channel_ids: Sequence[str], notification: Notification) -> FanoutResult:
        result = FanoutResult()
        if not channel_ids:
            return result

        async with asyncio.TaskGroup() as group:
            tasks = {
                channel_id: group.create_task(self._send_one(channel_id, notification))
                for channel_id in channel_ids
            }

        for channel_id, task in tasks.items():
            (result.delivered if task.result() else result.failed).append(channel_id)
        return result
