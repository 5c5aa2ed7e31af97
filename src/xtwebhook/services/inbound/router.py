"""Routing of verified inbound envelopes to notification channels.

Known event types are formatted and fanned out to the channels resolved
from the ChannelMap. Unknown event types are logged and acknowledged so
that new upstream events never break the receiver.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from xtwebhook.services.notifications.channels import ChannelMap
from xtwebhook.services.notifications.formatters import DEFAULT_FORMATTERS, Formatter
from xtwebhook.services.notifications.notifier import ChannelFanout
from xtwebhook.services.webhooks.envelope import EventEnvelope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingResult:
    """Outcome of routing one envelope.

    Attributes:
        event_type: Routed event type.
        handled: False when no handler is registered for the event type.
        channels: Channels the notification was sent to.
        failed_channels: Channels whose send failed (already logged).
    """

    event_type: str
    handled: bool
    channels: tuple[str, ...] = ()
    failed_channels: tuple[str, ...] = field(default=())


class EventRouter:
    """Dispatches inbound envelopes by event type.

    Args:
        channel_map: Event -> channel id mapping, loaded once at startup.
        fanout: Per-channel notification sender.
        formatters: Event type -> formatter table (defaults to all known events).
    """

    def __init__(
        self,
        channel_map: ChannelMap,
        fanout: ChannelFanout,
        formatters: Mapping[str, Formatter] | None = None,
    ) -> None:
        self._channel_map = channel_map
        self._fanout = fanout
        self._formatters = dict(DEFAULT_FORMATTERS if formatters is None else formatters)

    @property
    def channel_map(self) -> ChannelMap:
        return self._channel_map

    def handles(self, event_type: str) -> bool:
        return event_type in self._formatters

    async def route(self, envelope: EventEnvelope) -> RoutingResult:
        """Format and fan out one envelope.

        Notification failures are isolated per channel and do not raise.
        Formatter errors propagate to the caller.
        """
        event_type = envelope.event_type
        formatter = self._formatters.get(event_type)
        if formatter is None:
            logger.warning(
                "Unknown webhook event type: %s",
                event_type,
                extra={"event_type": event_type},
            )
            return RoutingResult(event_type=event_type, handled=False)

        notification = formatter(envelope.data)
        channels = self._channel_map.resolve(event_type)
        if not channels:
            logger.warning(
                "No channels configured for event type: %s",
                event_type,
                extra={"event_type": event_type},
            )
            return RoutingResult(event_type=event_type, handled=True)

        result = await self._fanout.send(channels, notification)
        if result.failed:
            logger.warning(
                "Event %s notified %d/%d channel(s)",
                event_type,
                len(result.delivered),
                result.attempted,
                extra={"event_type": event_type},
            )

        return RoutingResult(
            event_type=event_type,
            handled=True,
            channels=tuple(channels),
            failed_channels=tuple(result.failed),
        )
