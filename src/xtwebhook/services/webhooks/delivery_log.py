"""Append-only delivery log for outbound webhook attempts.

Every attempt is appended before the scheduler moves on, so delivery
history survives restarts when the log is file-backed. Each delivery
sequence (one webhook, one event instance) shares a delivery_id and ends
with exactly one terminal record: delivered, exhausted, or rejected.

Design requirements:
- Append-only: never truncate/overwrite
- Fail closed: IO failures raise DeliveryLogError
- Deterministic: sorted keys, compact separators
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from xtwebhook.errors import DeliveryLogError

logger = logging.getLogger(__name__)

UNDELIVERABLE_STATUS = 0


class DeliveryOutcome(str, Enum):
    """Outcome of one logged attempt."""

    DELIVERED = "delivered"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DeliveryAttempt:
    """One delivery log entry.

    Attributes:
        delivery_id: Shared by all attempts for one (webhook, event instance).
        webhook_id: Subscription id.
        tenant_id: Owning tenant of the subscription.
        event_type: Event name.
        payload: Envelope that was sent, as a JSON object.
        attempt_number: 1-based attempt number.
        response_status: HTTP status, None if no response, 0 when exhausted.
        response_body: Truncated response body or error text.
        delivered_at: ISO timestamp when delivered, else None.
        created_at: ISO timestamp when the record was written.
        outcome: delivered / failed / exhausted / rejected.
        terminal: True for the single final record of a delivery.
    """

    delivery_id: str
    webhook_id: str
    tenant_id: str
    event_type: str
    payload: dict[str, Any]
    attempt_number: int
    response_status: int | None
    response_body: str | None
    delivered_at: str | None
    created_at: str
    outcome: DeliveryOutcome
    terminal: bool

    @property
    def delivered(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryAttempt:
        return cls(
            delivery_id=data["delivery_id"],
            webhook_id=data["webhook_id"],
            tenant_id=data.get("tenant_id", ""),
            event_type=data["event_type"],
            payload=data.get("payload") or {},
            attempt_number=int(data["attempt_number"]),
            response_status=data.get("response_status"),
            response_body=data.get("response_body"),
            delivered_at=data.get("delivered_at"),
            created_at=data["created_at"],
            outcome=DeliveryOutcome(data["outcome"]),
            terminal=bool(data.get("terminal", False)),
        )


def _serialize(attempt: DeliveryAttempt) -> str:
    try:
        return json.dumps(attempt.to_dict(), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise DeliveryLogError(f"Failed to serialize delivery attempt: {e}") from e


@runtime_checkable
class DeliveryLog(Protocol):
    """Protocol for delivery logs. Implementations must be append-only."""

    def append(self, attempt: DeliveryAttempt) -> None:
        """Append one attempt.

        Raises:
            DeliveryLogError: If the attempt cannot be recorded.
        """
        ...

    def list_for_webhook(self, webhook_id: str) -> list[DeliveryAttempt]:
        """All attempts for a subscription, oldest first."""
        ...

    def terminal_record(self, delivery_id: str) -> DeliveryAttempt | None:
        """Final record of a delivery sequence, or None while in flight."""
        ...


class InMemoryDeliveryLog:
    """In-memory delivery log (tests and single-process deployments).

    Thread-safe for concurrent appends.
    """

    def __init__(self) -> None:
        self._attempts: list[DeliveryAttempt] = []
        self._lock = threading.Lock()

    def append(self, attempt: DeliveryAttempt) -> None:
        # Round-trip through JSON so in-memory and file logs accept the same payloads
        line = _serialize(attempt)
        with self._lock:
            self._attempts.append(DeliveryAttempt.from_dict(json.loads(line)))

    def list_for_webhook(self, webhook_id: str) -> list[DeliveryAttempt]:
        with self._lock:
            return [a for a in self._attempts if a.webhook_id == webhook_id]

    def terminal_record(self, delivery_id: str) -> DeliveryAttempt | None:
        with self._lock:
            for attempt in self._attempts:
                if attempt.delivery_id == delivery_id and attempt.terminal:
                    return attempt
        return None

    @property
    def attempts(self) -> list[DeliveryAttempt]:
        """Return all recorded attempts."""
        with self._lock:
            return list(self._attempts)

    def terminal_records(self) -> list[DeliveryAttempt]:
        with self._lock:
            return [a for a in self._attempts if a.terminal]

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()


class JsonlFileDeliveryLog:
    """Append-only JSONL file delivery log.

    Configuration:
    - File path is passed in; DeliveryConfig.delivery_log_path supplies it
    - Creates parent directories if missing
    - One line per attempt; never truncates existing content
    """

    def __init__(self, file_path: str | Path) -> None:
        """Initialize the JSONL file log.

        Args:
            file_path: JSONL file to append to. Parent directories are
                created on first write.
        """
        self._file_path = Path(file_path)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def _ensure_parent_directory(self) -> None:
        parent = self._file_path.parent
        if not parent.exists():
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DeliveryLogError(
                    f"Failed to create delivery log directory {parent}: {e}"
                ) from e

    def append(self, attempt: DeliveryAttempt) -> None:
        line = _serialize(attempt) + "\n"
        self._ensure_parent_directory()

        with self._lock:
            try:
                with open(self._file_path, mode="a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise DeliveryLogError(
                    f"Failed to write delivery attempt to {self._file_path}: {e}"
                ) from e

    def _read_all(self) -> list[DeliveryAttempt]:
        if not self._file_path.exists():
            return []

        attempts: list[DeliveryAttempt] = []
        with self._lock:
            try:
                with open(self._file_path, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                raise DeliveryLogError(f"Failed to read delivery log {self._file_path}: {e}") from e

        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                attempts.append(DeliveryAttempt.from_dict(json.loads(line)))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed delivery log line %d: %s", lineno, e)
        return attempts

    def list_for_webhook(self, webhook_id: str) -> list[DeliveryAttempt]:
        return [a for a in self._read_all() if a.webhook_id == webhook_id]

    def terminal_record(self, delivery_id: str) -> DeliveryAttempt | None:
        for attempt in self._read_all():
            if attempt.delivery_id == delivery_id and attempt.terminal:
                return attempt
        return None
