"""Runtime configuration for the xtwebhook gateway and sender.

Configuration is read from the environment once at startup into immutable
dataclasses, then handed to the app factories and service constructors.
Nothing downstream reads os.environ directly.

Gateway (receiver) environment variables:
    WEBHOOK_SECRET: Shared signing secret (default: "default-secret").
    WEBHOOK_PATH: Inbound endpoint path (default: /webhooks/xtsystems).
    WEBHOOK_HOST / WEBHOOK_PORT: Bind address (default: 0.0.0.0:3000).
    WEBHOOK_FRESHNESS_SECONDS: Allowed timestamp skew (default: 300).
    WEBHOOK_RATE_LIMIT_MAX: Requests per IP per window (default: 100).
    WEBHOOK_RATE_LIMIT_WINDOW_SECONDS: Rate limit window (default: 900).
    DISCORD_WEBHOOK_CHANNELS: JSON object of event key -> [channel ids].
    MONITOR_CHANNELS: Comma-separated fallback channel ids.
    DISCORD_TOKEN: Bot token for the Discord REST notifier (optional).
    XTSYSTEMS_API_URL / XTSYSTEMS_API_KEY: Management API used for registration.

Sender environment variables:
    XTW_RETRY_LIMIT: Default attempts per delivery (default: 3).
    XTW_TIMEOUT_SECONDS: Default per-attempt timeout (default: 30).
    XTW_BACKOFF_BASE_SECONDS: Backoff unit (default: 1).
    XTW_DELIVERY_LOG_PATH: JSONL delivery log path.
    XTW_API_KEYS_JSON: JSON object of API key -> tenant id.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Final

from xtwebhook.errors import ConfigError
from xtwebhook.rate_limit.limiter import RateLimitConfig
from xtwebhook.services.notifications.channels import ChannelMap

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_SECRET: Final[str] = "default-secret"
DEFAULT_WEBHOOK_PATH: Final[str] = "/webhooks/xtsystems"
DEFAULT_WEBHOOK_HOST: Final[str] = "0.0.0.0"
DEFAULT_WEBHOOK_PORT: Final[int] = 3000
DEFAULT_FRESHNESS_SECONDS: Final[int] = 300
DEFAULT_RATE_LIMIT_MAX: Final[int] = 100
DEFAULT_RATE_LIMIT_WINDOW_SECONDS: Final[int] = 15 * 60
DEFAULT_XTSYSTEMS_API_URL: Final[str] = "http://localhost:20437"

DEFAULT_RETRY_LIMIT: Final[int] = 3
DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
DEFAULT_BACKOFF_BASE_SECONDS: Final[int] = 1
DEFAULT_DELIVERY_LOG_PATH: Final[str] = "./var/webhooks/deliveries.jsonl"


@dataclass(frozen=True)
class GatewayConfig:
    """Receiver-side configuration (immutable).

    Attributes:
        webhook_secret: Shared secret used to verify inbound signatures.
        webhook_path: Path of the inbound POST endpoint.
        host: Bind host for the server.
        port: Bind port for the server.
        freshness_window_seconds: Maximum |now - timestamp| accepted.
        channel_map: Event -> destination channel mapping.
        rate_limit: Per-IP request limit applied before verification.
        discord_token: Bot token; None disables the Discord notifier.
        xtsystems_api_url: Base URL of the XTSystems management API.
        xtsystems_api_key: API key for registration calls (optional).
    """

    webhook_secret: str = DEFAULT_WEBHOOK_SECRET
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    host: str = DEFAULT_WEBHOOK_HOST
    port: int = DEFAULT_WEBHOOK_PORT
    freshness_window_seconds: int = DEFAULT_FRESHNESS_SECONDS
    channel_map: ChannelMap = field(default_factory=ChannelMap)
    rate_limit: RateLimitConfig = field(
        default_factory=lambda: RateLimitConfig(
            max_requests=DEFAULT_RATE_LIMIT_MAX,
            window_seconds=DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        )
    )
    discord_token: str | None = None
    xtsystems_api_url: str = DEFAULT_XTSYSTEMS_API_URL
    xtsystems_api_key: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.webhook_secret:
            raise ConfigError("WEBHOOK_SECRET must not be empty")
        if not self.webhook_path.startswith("/"):
            raise ConfigError(f"WEBHOOK_PATH must start with '/', got {self.webhook_path!r}")
        if self.freshness_window_seconds <= 0:
            raise ConfigError(
                "WEBHOOK_FRESHNESS_SECONDS must be a positive integer, "
                f"got {self.freshness_window_seconds}"
            )

    @property
    def uses_default_secret(self) -> bool:
        """True when the secret was never configured."""
        return self.webhook_secret == DEFAULT_WEBHOOK_SECRET


@dataclass(frozen=True)
class DeliveryConfig:
    """Sender-side configuration (immutable).

    Attributes:
        retry_limit: Default attempts per delivery for new subscriptions.
        timeout_seconds: Default per-attempt timeout for new subscriptions.
        backoff_base_seconds: Unit of the 2^k backoff between attempts.
        delivery_log_path: JSONL file backing the delivery log.
        api_keys: API key -> tenant id for the management API.
    """

    retry_limit: int = DEFAULT_RETRY_LIMIT
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    backoff_base_seconds: int = DEFAULT_BACKOFF_BASE_SECONDS
    delivery_log_path: str = DEFAULT_DELIVERY_LOG_PATH
    api_keys: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.retry_limit <= 0:
            raise ConfigError(f"XTW_RETRY_LIMIT must be a positive integer, got {self.retry_limit}")
        if self.timeout_seconds <= 0:
            raise ConfigError(
                f"XTW_TIMEOUT_SECONDS must be a positive integer, got {self.timeout_seconds}"
            )
        if self.backoff_base_seconds < 0:
            raise ConfigError(
                "XTW_BACKOFF_BASE_SECONDS must not be negative, "
                f"got {self.backoff_base_seconds}"
            )


def _parse_positive_int(environ: Mapping[str, str], env_var: str, default: int) -> int:
    """Parse a positive integer from the environment.

    Raises:
        ConfigError: If the value is set but not a positive integer.
    """
    raw = environ.get(env_var)
    if raw is None:
        return default

    raw = raw.strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be a positive integer, got '{raw}'") from e

    if value <= 0:
        raise ConfigError(f"{env_var} must be a positive integer, got {value}")

    return value


def _parse_optional_str(environ: Mapping[str, str], env_var: str) -> str | None:
    raw = environ.get(env_var, "").strip()
    return raw or None


def _parse_api_keys(raw: str | None) -> dict[str, str]:
    """Parse XTW_API_KEYS_JSON into an API key -> tenant id mapping.

    Values may be a tenant id string or an object with a "tenant_id" field.
    """
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"XTW_API_KEYS_JSON is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ConfigError("XTW_API_KEYS_JSON must be a JSON object")

    keys: dict[str, str] = {}
    for key, value in parsed.items():
        if isinstance(value, str) and value:
            keys[key] = value
        elif isinstance(value, dict) and isinstance(value.get("tenant_id"), str):
            keys[key] = value["tenant_id"]
        else:
            raise ConfigError(f"XTW_API_KEYS_JSON entry for key ending '{key[-4:]}' has no tenant")
    return keys


def load_gateway_config(environ: Mapping[str, str] | None = None) -> GatewayConfig:
    """Load receiver configuration from environment variables.

    Args:
        environ: Mapping to read instead of os.environ (for testing).

    Returns:
        Validated GatewayConfig.

    Raises:
        ConfigError: If any value is invalid.
    """
    env = os.environ if environ is None else environ

    monitor_raw = env.get("MONITOR_CHANNELS", "")
    monitor_channels = tuple(c.strip() for c in monitor_raw.split(",") if c.strip())
    channel_map = ChannelMap.from_json(
        env.get("DISCORD_WEBHOOK_CHANNELS"),
        monitor_channels=monitor_channels,
    )

    config = GatewayConfig(
        webhook_secret=env.get("WEBHOOK_SECRET", DEFAULT_WEBHOOK_SECRET),
        webhook_path=env.get("WEBHOOK_PATH", DEFAULT_WEBHOOK_PATH).strip() or DEFAULT_WEBHOOK_PATH,
        host=env.get("WEBHOOK_HOST", DEFAULT_WEBHOOK_HOST).strip() or DEFAULT_WEBHOOK_HOST,
        port=_parse_positive_int(env, "WEBHOOK_PORT", DEFAULT_WEBHOOK_PORT),
        freshness_window_seconds=_parse_positive_int(
            env, "WEBHOOK_FRESHNESS_SECONDS", DEFAULT_FRESHNESS_SECONDS
        ),
        channel_map=channel_map,
        rate_limit=RateLimitConfig(
            max_requests=_parse_positive_int(env, "WEBHOOK_RATE_LIMIT_MAX", DEFAULT_RATE_LIMIT_MAX),
            window_seconds=_parse_positive_int(
                env, "WEBHOOK_RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS
            ),
        ),
        discord_token=_parse_optional_str(env, "DISCORD_TOKEN"),
        xtsystems_api_url=env.get("XTSYSTEMS_API_URL", DEFAULT_XTSYSTEMS_API_URL).rstrip("/"),
        xtsystems_api_key=_parse_optional_str(env, "XTSYSTEMS_API_KEY"),
    )

    if config.uses_default_secret:
        logger.warning("WEBHOOK_SECRET is not set; using the insecure default secret")

    return config


def load_delivery_config(environ: Mapping[str, str] | None = None) -> DeliveryConfig:
    """Load sender configuration from environment variables.

    Args:
        environ: Mapping to read instead of os.environ (for testing).

    Returns:
        Validated DeliveryConfig.

    Raises:
        ConfigError: If any value is invalid.
    """
    env = os.environ if environ is None else environ

    backoff_raw = env.get("XTW_BACKOFF_BASE_SECONDS", "").strip()
    try:
        backoff_base = int(backoff_raw) if backoff_raw else DEFAULT_BACKOFF_BASE_SECONDS
    except ValueError as e:
        raise ConfigError(
            f"XTW_BACKOFF_BASE_SECONDS must be an integer, got '{backoff_raw}'"
        ) from e

    return DeliveryConfig(
        retry_limit=_parse_positive_int(env, "XTW_RETRY_LIMIT", DEFAULT_RETRY_LIMIT),
        timeout_seconds=_parse_positive_int(env, "XTW_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        backoff_base_seconds=backoff_base,
        delivery_log_path=env.get("XTW_DELIVERY_LOG_PATH", DEFAULT_DELIVERY_LOG_PATH),
        api_keys=_parse_api_keys(env.get("XTW_API_KEYS_JSON")),
    )
