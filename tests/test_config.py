"""Tests for environment-driven configuration loading."""

from __future__ import annotations

import json

import pytest

from xtwebhook.config import (
    DEFAULT_WEBHOOK_SECRET,
    DeliveryConfig,
    GatewayConfig,
    load_delivery_config,
    load_gateway_config,
)
from xtwebhook.errors import ConfigError


class TestLoadGatewayConfig:
    """Tests for load_gateway_config()."""

    def test_defaults(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING"):
            config = load_gateway_config({})

        assert config.webhook_secret == DEFAULT_WEBHOOK_SECRET
        assert config.uses_default_secret is True
        assert config.webhook_path == "/webhooks/xtsystems"
        assert config.port == 3000
        assert config.freshness_window_seconds == 300
        assert config.rate_limit.max_requests == 100
        assert config.rate_limit.window_seconds == 900
        assert config.discord_token is None
        assert "insecure default secret" in caplog.text

    def test_reads_environment(self) -> None:
        config = load_gateway_config(
            {
                "WEBHOOK_SECRET": "s3cret",
                "WEBHOOK_PATH": "/hooks",
                "WEBHOOK_PORT": "8081",
                "WEBHOOK_FRESHNESS_SECONDS": "60",
                "WEBHOOK_RATE_LIMIT_MAX": "5",
                "WEBHOOK_RATE_LIMIT_WINDOW_SECONDS": "10",
                "DISCORD_WEBHOOK_CHANNELS": json.dumps({"ticket_created": ["111"]}),
                "MONITOR_CHANNELS": "900, 901,",
                "DISCORD_TOKEN": "tok",
                "XTSYSTEMS_API_URL": "http://xts.local:20437/",
                "XTSYSTEMS_API_KEY": "key",
            }
        )

        assert config.uses_default_secret is False
        assert config.webhook_path == "/hooks"
        assert config.port == 8081
        assert config.freshness_window_seconds == 60
        assert config.rate_limit.max_requests == 5
        assert config.channel_map.resolve("ticket.created") == ("111",)
        assert config.channel_map.monitor_channels == ("900", "901")
        assert config.discord_token == "tok"
        assert config.xtsystems_api_url == "http://xts.local:20437"
        assert config.xtsystems_api_key == "key"

    def test_reads_os_environ_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WEBHOOK_SECRET", "from-env")

        assert load_gateway_config().webhook_secret == "from-env"

    @pytest.mark.parametrize(
        "env",
        [
            {"WEBHOOK_PORT": "abc"},
            {"WEBHOOK_FRESHNESS_SECONDS": "0"},
            {"WEBHOOK_RATE_LIMIT_MAX": "-1"},
            {"WEBHOOK_PATH": "no-slash"},
            {"WEBHOOK_SECRET": ""},
            {"DISCORD_WEBHOOK_CHANNELS": "{broken"},
        ],
    )
    def test_invalid_values_raise(self, env: dict[str, str]) -> None:
        with pytest.raises(ConfigError):
            load_gateway_config(env)

    def test_gateway_config_is_frozen(self) -> None:
        config = GatewayConfig()

        with pytest.raises(AttributeError):
            config.webhook_secret = "x"  # type: ignore[misc]


class TestLoadDeliveryConfig:
    """Tests for load_delivery_config()."""

    def test_defaults(self) -> None:
        config = load_delivery_config({})

        assert config.retry_limit == 3
        assert config.timeout_seconds == 30
        assert config.backoff_base_seconds == 1
        assert config.api_keys == {}

    def test_reads_environment(self) -> None:
        config = load_delivery_config(
            {
                "XTW_RETRY_LIMIT": "5",
                "XTW_TIMEOUT_SECONDS": "10",
                "XTW_BACKOFF_BASE_SECONDS": "0",
                "XTW_DELIVERY_LOG_PATH": "/tmp/d.jsonl",
                "XTW_API_KEYS_JSON": json.dumps(
                    {"k1": "tenant-1", "k2": {"tenant_id": "tenant-2"}}
                ),
            }
        )

        assert config.retry_limit == 5
        assert config.timeout_seconds == 10
        assert config.backoff_base_seconds == 0
        assert config.delivery_log_path == "/tmp/d.jsonl"
        assert config.api_keys == {"k1": "tenant-1", "k2": "tenant-2"}

    @pytest.mark.parametrize(
        "env",
        [
            {"XTW_RETRY_LIMIT": "0"},
            {"XTW_TIMEOUT_SECONDS": "x"},
            {"XTW_BACKOFF_BASE_SECONDS": "-1"},
            {"XTW_BACKOFF_BASE_SECONDS": "fast"},
            {"XTW_API_KEYS_JSON": "not json"},
            {"XTW_API_KEYS_JSON": "[]"},
            {"XTW_API_KEYS_JSON": '{"k": {"name": "no tenant"}}'},
        ],
    )
    def test_invalid_values_raise(self, env: dict[str, str]) -> None:
        with pytest.raises(ConfigError):
            load_delivery_config(env)

    def test_api_key_error_does_not_echo_key(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_delivery_config({"XTW_API_KEYS_JSON": '{"super-secret-key-1234": 5}'})

        assert "super-secret-key" not in str(exc_info.value)

    def test_delivery_config_validates_directly(self) -> None:
        with pytest.raises(ConfigError):
            DeliveryConfig(retry_limit=0)
