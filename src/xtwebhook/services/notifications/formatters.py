"""Per-event notification formatters.

Each formatter turns an envelope's data object into a Notification. Missing
fields fall back to readable placeholders; free-text fields are truncated
to FIELD_TEXT_LIMIT characters. Formatting is cosmetic; routing does not
depend on it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

FIELD_TEXT_LIMIT: Final[int] = 1000
FOOTER_TEXT: Final[str] = "XTSystems"

COLOR_GREEN: Final[int] = 0x00FF00
COLOR_AMBER: Final[int] = 0xFFAA00
COLOR_GREY: Final[int] = 0x999999
COLOR_BLUE: Final[int] = 0x0099FF
COLOR_ORANGE: Final[int] = 0xFF9900
COLOR_RED: Final[int] = 0xFF0000
COLOR_PURPLE: Final[int] = 0x9966FF


@dataclass(frozen=True)
class NotificationField:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True)
class NotificationButton:
    """Action button attached to a notification.

    Attributes:
        custom_id: Interaction id, e.g. "approve_machine_42".
        label: Button text.
        style: "success" or "danger".
    """

    custom_id: str
    label: str
    style: str = "success"


@dataclass(frozen=True)
class Notification:
    """Channel-agnostic rendering of one event."""

    event_type: str
    title: str
    description: str
    color: int
    fields: tuple[NotificationField, ...] = ()
    buttons: tuple[NotificationButton, ...] = ()
    footer: str = FOOTER_TEXT
    timestamp: str | None = None


Formatter = Callable[[Mapping[str, Any]], Notification]


def _text(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    return str(value)


def _truncate(value: Any, limit: int = FIELD_TEXT_LIMIT) -> str:
    return str(value)[:limit]


def format_ticket_created(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="ticket.created",
        title="New Ticket Created",
        description=_truncate(_text(data.get("description"), "No description provided")),
        color=COLOR_GREEN,
        fields=(
            NotificationField("Ticket ID", f"#{_text(data.get('id'), '?')}"),
            NotificationField("Title", _text(data.get("title"), "Untitled")),
            NotificationField("Priority", _text(data.get("priority"), "Medium")),
            NotificationField("Status", _text(data.get("status"), "Open")),
            NotificationField("Created By", _text(data.get("created_by"), "Unknown")),
            NotificationField("Company", _text(data.get("company_name"), "Unknown")),
        ),
    )


def format_ticket_updated(data: Mapping[str, Any]) -> Notification:
    fields = [
        NotificationField("Title", _text(data.get("title"), "Untitled")),
        NotificationField("Status", _text(data.get("status"), "Unknown")),
        NotificationField("Priority", _text(data.get("priority"), "Medium")),
    ]
    notes = data.get("notes")
    if isinstance(notes, list) and notes:
        latest = notes[-1]
        content = latest.get("content") if isinstance(latest, dict) else latest
        if content:
            fields.append(NotificationField("Latest Note", _truncate(content), inline=False))

    return Notification(
        event_type="ticket.updated",
        title="Ticket Updated",
        description=f"Ticket #{_text(data.get('id'), '?')} has been updated",
        color=COLOR_AMBER,
        fields=tuple(fields),
    )


def format_ticket_closed(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="ticket.closed",
        title="Ticket Closed",
        description=f"Ticket #{_text(data.get('id'), '?')} has been closed",
        color=COLOR_GREY,
        fields=(
            NotificationField("Title", _text(data.get("title"), "Untitled")),
            NotificationField("Final Status", _text(data.get("status"), "Closed")),
            NotificationField(
                "Resolution",
                _truncate(_text(data.get("resolution"), "No resolution provided")),
                inline=False,
            ),
        ),
    )


def _asset_fields(data: Mapping[str, Any]) -> list[NotificationField]:
    fields = [
        NotificationField("Asset ID", _text(data.get("id"), "?")),
        NotificationField("Name", _text(data.get("name"), "Unnamed")),
        NotificationField("Type", _text(data.get("asset_type"), "Unknown")),
    ]
    if data.get("description"):
        fields.append(
            NotificationField("Description", _truncate(data["description"]), inline=False)
        )
    return fields


def format_asset_created(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="asset.created",
        title="New Asset Created",
        description=f'Asset "{_text(data.get("name"), "Unnamed")}" has been created',
        color=COLOR_BLUE,
        fields=tuple(_asset_fields(data)),
    )


def format_asset_updated(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="asset.updated",
        title="Asset Updated",
        description=f'Asset "{_text(data.get("name"), "Unnamed")}" has been updated',
        color=COLOR_AMBER,
        fields=tuple(_asset_fields(data)),
    )


def format_user_created(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="user.created",
        title="New User Created",
        description=f"User {_text(data.get('username') or data.get('email'), 'Unknown')} joined",
        color=COLOR_GREEN,
        fields=(
            NotificationField("User ID", _text(data.get("id"), "?")),
            NotificationField("Email", _text(data.get("email"), "Unknown")),
            NotificationField("Role", _text(data.get("role"), "User")),
        ),
    )


def format_company_created(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="company.created",
        title="New Company Created",
        description=f'Company "{_text(data.get("name"), "Unnamed")}" has been created',
        color=COLOR_PURPLE,
        fields=(
            NotificationField("Company ID", _text(data.get("id"), "?")),
            NotificationField("Name", _text(data.get("name"), "Unnamed")),
        ),
    )


def format_machine_registered(data: Mapping[str, Any]) -> Notification:
    machine_id = _text(data.get("id"), "unknown")
    hostname = _text(data.get("hostname"), "unknown")
    return Notification(
        event_type="machine.registered",
        title="New Machine Registered",
        description=f'Machine "{hostname}" is requesting approval',
        color=COLOR_ORANGE,
        fields=(
            NotificationField("Hostname", hostname),
            NotificationField("IP Address", _text(data.get("ip_address"), "Unknown")),
            NotificationField("OS", _text(data.get("operating_system"), "Unknown")),
            NotificationField("Status", "Pending Approval"),
        ),
        buttons=(
            NotificationButton(f"approve_machine_{machine_id}", "Approve", "success"),
            NotificationButton(f"deny_machine_{machine_id}", "Deny", "danger"),
        ),
    )


def format_machine_approved(data: Mapping[str, Any]) -> Notification:
    hostname = _text(data.get("hostname"), "unknown")
    return Notification(
        event_type="machine.approved",
        title="Machine Approved",
        description=f'Machine "{hostname}" has been approved',
        color=COLOR_GREEN,
        fields=(
            NotificationField("Hostname", hostname),
            NotificationField("Approved By", _text(data.get("approved_by"), "Unknown")),
        ),
    )


def format_alert_triggered(data: Mapping[str, Any]) -> Notification:
    fields = [
        NotificationField("Alert Type", _text(data.get("alert_type"), "Unknown")),
        NotificationField("Severity", _text(data.get("severity"), "Medium")),
        NotificationField("Source", _text(data.get("source"), "System")),
    ]
    if data.get("details"):
        fields.append(NotificationField("Details", _truncate(data["details"]), inline=False))

    return Notification(
        event_type="alert.triggered",
        title="Alert Triggered",
        description=_truncate(_text(data.get("message"), "System alert triggered")),
        color=COLOR_RED,
        fields=tuple(fields),
        footer="XTSystems Alert",
    )


def format_webhook_test(data: Mapping[str, Any]) -> Notification:
    return Notification(
        event_type="webhook.test",
        title="Test Webhook Received",
        description=_truncate(_text(data.get("message"), "Webhook connectivity test")),
        color=COLOR_BLUE,
    )


DEFAULT_FORMATTERS: Final[Mapping[str, Formatter]] = {
    "ticket.created": format_ticket_created,
    "ticket.updated": format_ticket_updated,
    "ticket.closed": format_ticket_closed,
    "asset.created": format_asset_created,
    "asset.updated": format_asset_updated,
    "user.created": format_user_created,
    "company.created": format_company_created,
    "machine.registered": format_machine_registered,
    "machine.approved": format_machine_approved,
    "alert.triggered": format_alert_triggered,
    "webhook.test": format_webhook_test,
}

SUPPORTED_EVENTS: Final[tuple[str, ...]] = tuple(
    event for event in DEFAULT_FORMATTERS if event != "webhook.test"
)
