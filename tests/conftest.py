"""Pytest configuration and fixtures for xtwebhook tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from xtwebhook.observability.tracing import reset_tracing
from xtwebhook.services.webhooks.registry import WebhookSubscription

ENV_PREFIXES = ("XTW_", "WEBHOOK_", "DISCORD_", "XTSYSTEMS_")
ENV_NAMES = ("MONITOR_CHANNELS", "LOG_LEVEL")

TEST_SECRET = "test-webhook-secret"
FIXED_NOW = 1_704_067_200


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Strip xtwebhook environment variables so config loads its defaults.

    Tests that need a variable set it explicitly with monkeypatch.setenv.
    """
    import os

    for name in list(os.environ):
        if name.startswith(ENV_PREFIXES) or name in ENV_NAMES:
            monkeypatch.delenv(name, raising=False)

    reset_tracing()


@pytest.fixture
def fixed_now() -> int:
    """Unix time used as "now" by clock-injected components."""
    return FIXED_NOW


@pytest.fixture
def make_subscription() -> Callable[..., WebhookSubscription]:
    """Factory for WebhookSubscription values with sensible defaults."""

    def _make(**overrides: Any) -> WebhookSubscription:
        values: dict[str, Any] = {
            "webhook_id": "wh-1",
            "tenant_id": "tenant-a",
            "url": "https://hooks.example.com/receiver",
            "events": frozenset({"ticket.created"}),
            "secret": TEST_SECRET,
            "retry_limit": 3,
            "timeout_seconds": 5,
        }
        values.update(overrides)
        return WebhookSubscription(**values)

    return _make
