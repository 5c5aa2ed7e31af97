"""Event envelope exchanged over the webhook wire protocol.

Wire shape (JSON object):
    {"event_type": str, "data": object, "company_id": str, "timestamp": int}

encode() is called once per dispatch; the resulting bytes are what gets
signed and sent to every recipient.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

from xtwebhook.errors import EnvelopeError


@dataclass(frozen=True)
class EventEnvelope:
    """Signed event payload.

    Attributes:
        event_type: Event name, e.g. "ticket.created".
        data: Event-specific JSON object.
        source_id: Originating tenant/company id (wire name: company_id).
        timestamp: Unix seconds at send time.
    """

    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    source_id: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "data": self.data,
            "company_id": self.source_id,
            "timestamp": self.timestamp,
        }

    def encode(self) -> bytes:
        """Serialize to the canonical wire bytes (compact JSON, UTF-8)."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False).encode(
            "utf-8"
        )

    @classmethod
    def from_dict(cls, raw: Any) -> EventEnvelope:
        """Build an envelope from a parsed JSON object.

        Raises:
            EnvelopeError: If required fields are missing or mistyped.
        """
        if not isinstance(raw, dict):
            raise EnvelopeError("Envelope must be a JSON object")

        event_type = raw.get("event_type")
        if not isinstance(event_type, str) or not event_type.strip():
            raise EnvelopeError("Envelope is missing event_type")

        data = raw.get("data", {})
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise EnvelopeError("Envelope data must be a JSON object")

        source_id = raw.get("company_id", "")
        timestamp = raw.get("timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
            raise EnvelopeError("Envelope timestamp must be a number")

        return cls(
            event_type=event_type,
            data=data,
            source_id="" if source_id is None else str(source_id),
            timestamp=int(timestamp),
        )

    @classmethod
    def decode(cls, body: bytes) -> EventEnvelope:
        """Parse wire bytes into an envelope.

        Raises:
            EnvelopeError: If the body is not valid JSON or not an envelope.
        """
        try:
            raw = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EnvelopeError(f"Body is not valid JSON: {e}") from e
        return cls.from_dict(raw)


def build_envelope(
    event_type: str,
    data: dict[str, Any],
    source_id: str,
    now: float | None = None,
) -> EventEnvelope:
    """Create an envelope stamped with the current Unix time."""
    timestamp = int(time.time() if now is None else now)
    return EventEnvelope(
        event_type=event_type,
        data=dict(data),
        source_id=source_id,
        timestamp=timestamp,
    )
