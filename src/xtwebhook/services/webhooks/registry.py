"""Webhook subscription registry for xtwebhook.

Tenant-scoped CRUD over WebhookSubscription plus the find() lookup used by
the dispatcher.

Concurrency:
- Each tenant's subscriptions live in an immutable snapshot mapping. Reads
  grab the current snapshot without locking, so find() sees a point-in-time
  view and subscriptions added mid-dispatch are not part of that wave.
- Writes build a new snapshot under the tenant's lock and swap it in, so
  concurrent edits of one tenant are serialized and never lose updates.

NEVER log secrets.
"""

from __future__ import annotations

import logging
import secrets
import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Final
from urllib.parse import urlsplit

from xtwebhook.errors import ConflictError, NotFoundError, ValidationError
from xtwebhook.services.webhooks.delivery_log import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_RETRY_LIMIT: Final[int] = 3
DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
SECRET_BYTES: Final[int] = 32
_HEADER_NAME_FORBIDDEN: Final[str] = " \t:()<>@,;\\\"/[]?={}"


@dataclass(frozen=True)
class WebhookSubscription:
    """Registered destination for a subset of event types.

    Attributes:
        webhook_id: Opaque unique id generated at creation.
        tenant_id: Owning tenant (the envelope's company_id).
        url: Destination endpoint.
        events: Subscribed event types (non-empty).
        secret: Shared signing secret.
        name: Optional display name, unique per tenant when set.
        active: Inactive subscriptions are skipped by the dispatcher.
        retry_limit: Attempts per delivery.
        timeout_seconds: Per-attempt timeout.
        custom_headers: Extra headers merged into every delivery.
        created_at: Creation timestamp (ISO format).
        updated_at: Last update timestamp (ISO format).
    """

    webhook_id: str
    tenant_id: str
    url: str
    events: frozenset[str]
    secret: str
    name: str | None = None
    active: bool = True
    retry_limit: int = DEFAULT_RETRY_LIMIT
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    custom_headers: Mapping[str, str] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without the secret."""
        return {
            "id": self.webhook_id,
            "name": self.name,
            "url": self.url,
            "events": sorted(self.events),
            "active": self.active,
            "retry_limit": self.retry_limit,
            "timeout_seconds": self.timeout_seconds,
            "headers": dict(self.custom_headers),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CreateWebhookInput:
    """Input for creating a webhook subscription.

    A secret is generated when none is supplied; retry_limit and timeout_seconds
    fall back to the registry defaults.
    """

    url: str
    events: Iterable[str]
    secret: str | None = None
    name: str | None = None
    active: bool = True
    retry_limit: int | None = None
    timeout_seconds: int | None = None
    custom_headers: Mapping[str, str] | None = None


@dataclass
class UpdateWebhookInput:
    """Partial update; None fields are left unchanged."""

    url: str | None = None
    events: Iterable[str] | None = None
    secret: str | None = None
    name: str | None = None
    active: bool | None = None
    retry_limit: int | None = None
    timeout_seconds: int | None = None
    custom_headers: Mapping[str, str] | None = None


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


def _validate_url(url: str) -> str:
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ValidationError(f"Malformed target URL: {e}") from e
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValidationError("Target URL must be an absolute http(s) URL")
    return url


def _validate_events(events: Iterable[str]) -> frozenset[str]:
    cleaned = frozenset(e.strip() for e in events if isinstance(e, str) and e.strip())
    if not cleaned:
        raise ValidationError("At least one event type is required")
    return cleaned


def _validate_headers(headers: Mapping[str, str] | None) -> MappingProxyType[str, str]:
    """Header names must be HTTP tokens; values printable ASCII without CR/LF."""
    cleaned: dict[str, str] = {}
    for name, value in (headers or {}).items():
        if not isinstance(name, str) or not name or not name.isascii():
            raise ValidationError(f"Invalid custom header name {name!r}")
        if any(ch in _HEADER_NAME_FORBIDDEN or not ch.isprintable() for ch in name):
            raise ValidationError(f"Invalid custom header name {name!r}")
        if not isinstance(value, str) or not value.isascii():
            raise ValidationError(f"Custom header {name} must have an ASCII value")
        if any(ch in "\r\n\x00" for ch in value):
            raise ValidationError(f"Custom header {name} must not contain line breaks")
        cleaned[name] = value
    return MappingProxyType(cleaned)


def _validate_positive(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value


class WebhookRegistry:
    """In-memory, tenant-scoped subscription registry."""

    def __init__(
        self,
        default_retry_limit: int = DEFAULT_RETRY_LIMIT,
        default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._default_retry_limit = default_retry_limit
        self._default_timeout_seconds = default_timeout_seconds
        self._snapshots: dict[str, Mapping[str, WebhookSubscription]] = {}
        self._tenant_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._tenant_locks.get(tenant_id)
            if lock is None:
                lock = threading.Lock()
                self._tenant_locks[tenant_id] = lock
            return lock

    def _snapshot(self, tenant_id: str) -> Mapping[str, WebhookSubscription]:
        return self._snapshots.get(tenant_id, MappingProxyType({}))

    def _publish(self, tenant_id: str, subscriptions: dict[str, WebhookSubscription]) -> None:
        self._snapshots[tenant_id] = MappingProxyType(subscriptions)

    @staticmethod
    def _check_name_free(
        snapshot: Mapping[str, WebhookSubscription],
        name: str | None,
        exclude_id: str | None = None,
    ) -> None:
        if not name:
            return
        for sub in snapshot.values():
            if sub.name == name and sub.webhook_id != exclude_id:
                raise ConflictError(f"Webhook named {name!r} already exists")

    def create(self, tenant_id: str, input_data: CreateWebhookInput) -> WebhookSubscription:
        """Register a new subscription.

        Raises:
            ValidationError: If URL, events, or limits are invalid.
            ConflictError: If the tenant already has a subscription with this name.
        """
        url = _validate_url(input_data.url)
        events = _validate_events(input_data.events)
        retry_limit = _validate_positive(
            "retry_limit",
            self._default_retry_limit if input_data.retry_limit is None else input_data.retry_limit,
        )
        timeout_seconds = _validate_positive(
            "timeout_seconds",
            self._default_timeout_seconds
            if input_data.timeout_seconds is None
            else input_data.timeout_seconds,
        )
        custom_headers = _validate_headers(input_data.custom_headers)
        now = utc_now_iso()

        subscription = WebhookSubscription(
            webhook_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            url=url,
            events=events,
            secret=input_data.secret or generate_secret(),
            name=input_data.name or None,
            active=input_data.active,
            retry_limit=retry_limit,
            timeout_seconds=timeout_seconds,
            custom_headers=custom_headers,
            created_at=now,
            updated_at=now,
        )

        with self._lock_for(tenant_id):
            current = self._snapshot(tenant_id)
            self._check_name_free(current, subscription.name)
            updated = dict(current)
            updated[subscription.webhook_id] = subscription
            self._publish(tenant_id, updated)

        logger.info(
            "Webhook created: id=%s tenant=%s events=%s",
            subscription.webhook_id,
            tenant_id,
            ",".join(sorted(events)),
            extra={"webhook_id": subscription.webhook_id},
        )
        return subscription

    def get(self, webhook_id: str, tenant_id: str) -> WebhookSubscription:
        """Fetch one subscription owned by the tenant.

        Raises:
            NotFoundError: If absent or owned by another tenant.
        """
        subscription = self._snapshot(tenant_id).get(webhook_id)
        if subscription is None:
            raise NotFoundError(f"Webhook {webhook_id} not found")
        return subscription

    def list_webhooks(
        self, tenant_id: str, active_only: bool = False
    ) -> list[WebhookSubscription]:
        """List a tenant's subscriptions, oldest first."""
        subs = [s for s in self._snapshot(tenant_id).values() if s.active or not active_only]
        return sorted(subs, key=lambda s: (s.created_at, s.webhook_id))

    def update(
        self,
        webhook_id: str,
        tenant_id: str,
        changes: UpdateWebhookInput,
    ) -> WebhookSubscription:
        """Replace the supplied fields of a subscription.

        Raises:
            NotFoundError: If absent or owned by another tenant.
            ValidationError: If a supplied field is invalid.
            ConflictError: If the new name is taken.
        """
        fields: dict[str, Any] = {}
        if changes.url is not None:
            fields["url"] = _validate_url(changes.url)
        if changes.events is not None:
            fields["events"] = _validate_events(changes.events)
        if changes.secret is not None:
            if not changes.secret:
                raise ValidationError("secret must not be empty")
            fields["secret"] = changes.secret
        if changes.name is not None:
            fields["name"] = changes.name or None
        if changes.active is not None:
            fields["active"] = changes.active
        if changes.retry_limit is not None:
            fields["retry_limit"] = _validate_positive("retry_limit", changes.retry_limit)
        if changes.timeout_seconds is not None:
            fields["timeout_seconds"] = _validate_positive(
                "timeout_seconds", changes.timeout_seconds
            )
        if changes.custom_headers is not None:
            fields["custom_headers"] = _validate_headers(changes.custom_headers)

        with self._lock_for(tenant_id):
            current = self._snapshot(tenant_id)
            existing = current.get(webhook_id)
            if existing is None:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            if "name" in fields:
                self._check_name_free(current, fields["name"], exclude_id=webhook_id)

            updated_sub = replace(existing, updated_at=utc_now_iso(), **fields)
            updated = dict(current)
            updated[webhook_id] = updated_sub
            self._publish(tenant_id, updated)

        logger.info(
            "Webhook updated: id=%s tenant=%s fields=%s",
            webhook_id,
            tenant_id,
            ",".join(sorted(fields)),
            extra={"webhook_id": webhook_id},
        )
        return updated_sub

    def delete(self, webhook_id: str, tenant_id: str) -> None:
        """Remove a subscription.

        Raises:
            NotFoundError: If absent or owned by another tenant.
        """
        with self._lock_for(tenant_id):
            current = self._snapshot(tenant_id)
            if webhook_id not in current:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            updated = dict(current)
            del updated[webhook_id]
            self._publish(tenant_id, updated)

        logger.info(
            "Webhook deleted: id=%s tenant=%s",
            webhook_id,
            tenant_id,
            extra={"webhook_id": webhook_id},
        )

    def find(self, event_type: str, tenant_id: str) -> list[WebhookSubscription]:
        """Active subscriptions of the tenant that subscribe to event_type.

        Returns a point-in-time snapshot; no lock is taken.
        """
        snapshot = self._snapshot(tenant_id)
        return [s for s in snapshot.values() if s.active and s.subscribes_to(event_type)]

    @property
    def default_retry_limit(self) -> int:
        return self._default_retry_limit

    @property
    def default_timeout_seconds(self) -> int:
        return self._default_timeout_seconds
