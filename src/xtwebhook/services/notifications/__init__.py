"""Inbound event notifications: formatting, channel mapping and delivery."""

from xtwebhook.services.notifications.channels import ChannelMap, channel_key
from xtwebhook.services.notifications.formatters import (
    DEFAULT_FORMATTERS,
    SUPPORTED_EVENTS,
    Notification,
)
from xtwebhook.services.notifications.notifier import (
    ChannelFanout,
    DiscordRestNotifier,
    LoggingNotifier,
    Notifier,
)

__all__ = [
    "DEFAULT_FORMATTERS",
    "SUPPORTED_EVENTS",
    "ChannelFanout",
    "ChannelMap",
    "DiscordRestNotifier",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "channel_key",
]
