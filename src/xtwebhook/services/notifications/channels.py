"""Event -> destination channel mapping for inbound notifications.

The mapping is parsed once from DISCORD_WEBHOOK_CHANNELS and passed by
reference into the event router. Keys may use the channel-key form
("ticket_created") or the dotted event form ("ticket.created").

Resolution order for an event:
    1. Explicit entry for the event
    2. "default" entry
    3. MONITOR_CHANNELS fallback
    4. Empty (caller logs and skips)
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

from xtwebhook.errors import ConfigError

DEFAULT_KEY: Final[str] = "default"


def channel_key(event_type: str) -> str:
    """Convert a dotted event type to its channel-map key (ticket.created -> ticket_created)."""
    return event_type.replace(".", "_")


@dataclass(frozen=True)
class ChannelMap:
    """Immutable event -> channel ids mapping.

    Attributes:
        mapping: Channel key -> tuple of channel ids.
        monitor_channels: Last-resort channels when no entry matches.
    """

    mapping: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    monitor_channels: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        normalized = {channel_key(k): tuple(v) for k, v in self.mapping.items()}
        object.__setattr__(self, "mapping", MappingProxyType(normalized))

    @classmethod
    def from_json(
        cls,
        raw: str | None,
        monitor_channels: tuple[str, ...] = (),
    ) -> ChannelMap:
        """Parse a JSON object of event key -> channel id list.

        Raises:
            ConfigError: If the JSON is malformed or values are not lists of ids.
        """
        if raw is None or not raw.strip():
            return cls(mapping={}, monitor_channels=monitor_channels)

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"DISCORD_WEBHOOK_CHANNELS is not valid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise ConfigError("DISCORD_WEBHOOK_CHANNELS must be a JSON object")

        mapping: dict[str, tuple[str, ...]] = {}
        for key, value in parsed.items():
            if isinstance(value, str | int):
                value = [value]
            if not isinstance(value, list) or not all(isinstance(v, str | int) for v in value):
                raise ConfigError(
                    f"DISCORD_WEBHOOK_CHANNELS[{key!r}] must be a list of channel ids"
                )
            mapping[key] = tuple(str(v) for v in value)

        return cls(mapping=mapping, monitor_channels=monitor_channels)

    def resolve(self, event_type: str) -> tuple[str, ...]:
        """Return destination channel ids for an event type (possibly empty)."""
        explicit = self.mapping.get(channel_key(event_type))
        if explicit:
            return explicit

        default = self.mapping.get(DEFAULT_KEY)
        if default:
            return default

        return self.monitor_channels

    def as_dict(self) -> dict[str, list[str]]:
        """JSON-friendly view for the config endpoint."""
        return {key: list(ids) for key, ids in sorted(self.mapping.items())}
