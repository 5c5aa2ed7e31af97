"""FastAPI application factories for xtwebhook.

create_gateway_app() builds the receiver (inbound webhook endpoint, health,
integration helpers). create_sender_app() builds the sender side
(subscription management, delivery history, test deliveries, event
emission).

Configuration objects and collaborators are created once here and handed
to routes through app.state; nothing is looked up from module globals.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx
from fastapi import FastAPI

from xtwebhook import __version__
from xtwebhook.api.errors import register_exception_handlers
from xtwebhook.api.middleware.rate_limit import IpRateLimitMiddleware
from xtwebhook.api.middleware.request_id import RequestIdMiddleware
from xtwebhook.api.routes.events import router as events_router
from xtwebhook.api.routes.health import router as health_router
from xtwebhook.api.routes.inbound import install_inbound_route
from xtwebhook.api.routes.integration import router as integration_router
from xtwebhook.api.routes.webhooks import router as webhooks_router
from xtwebhook.config import (
    DeliveryConfig,
    GatewayConfig,
    load_delivery_config,
    load_gateway_config,
)
from xtwebhook.observability.tracing import configure_tracing, instrument_fastapi, instrument_httpx
from xtwebhook.rate_limit.limiter import SlidingWindowRateLimiter
from xtwebhook.services.inbound.replay_cache import DEFAULT_MAX_ENTRIES, BoundedLRUCache
from xtwebhook.services.inbound.router import EventRouter
from xtwebhook.services.notifications.notifier import (
    ChannelFanout,
    DiscordRestNotifier,
    LoggingNotifier,
    Notifier,
)
from xtwebhook.services.webhooks.delivery_log import DeliveryLog, JsonlFileDeliveryLog
from xtwebhook.services.webhooks.dispatcher import EventDispatcher
from xtwebhook.services.webhooks.registry import WebhookRegistry
from xtwebhook.services.webhooks.retry import RetryScheduler
from xtwebhook.services.xtsystems_client import XTSystemsClient

logger = logging.getLogger(__name__)

GATEWAY_SERVICE_NAME = "xtsystems-discord-bot"
SENDER_SERVICE_NAME = "xtwebhook-sender"


def create_gateway_app(
    config: GatewayConfig | None = None,
    notifier: Notifier | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
    xtsystems_client: XTSystemsClient | None = None,
    clock: Callable[[], float] = time.time,
    replay_cache_size: int = DEFAULT_MAX_ENTRIES,
    trust_forwarded_for: bool = False,
) -> FastAPI:
    """Create the inbound webhook receiver.

    Middleware ordering (outermost to innermost):
    1. RequestIdMiddleware - request_id available everywhere
    2. IpRateLimitMiddleware - rejects floods before signature verification

    Starlette middleware is added in reverse order (last added = outermost).

    Args:
        config: Receiver configuration. If None, loaded from the environment.
        notifier: Channel notifier. If None, a DiscordRestNotifier when a bot
            token is configured, otherwise a LoggingNotifier.
        rate_limiter: Optional limiter (for testing). Built from config if None.
        xtsystems_client: Optional management API client (for testing).
        clock: Unix time source used for freshness checks.
        replay_cache_size: Max remembered signatures for duplicate detection.
        trust_forwarded_for: Key rate limiting on X-Forwarded-For.
    """
    if config is None:
        config = load_gateway_config()

    if notifier is None:
        if config.discord_token:
            notifier = DiscordRestNotifier(config.discord_token)
            notifier_status = "ready"
        else:
            logger.warning("DISCORD_TOKEN is not set; notifications will only be logged")
            notifier = LoggingNotifier()
            notifier_status = "disabled"
    else:
        notifier_status = "ready"

    if rate_limiter is None:
        rate_limiter = SlidingWindowRateLimiter(config.rate_limit)

    if xtsystems_client is None:
        xtsystems_client = XTSystemsClient(config.xtsystems_api_url, config.xtsystems_api_key)

    configure_tracing()
    instrument_httpx()

    app = FastAPI(
        title="XTSystems Webhook Gateway",
        version=__version__,
        description="Verifies XTSystems webhooks and fans them out to chat channels",
    )

    app.state.service_name = GATEWAY_SERVICE_NAME
    app.state.gateway_config = config
    app.state.notifier_status = notifier_status
    app.state.event_router = EventRouter(config.channel_map, ChannelFanout(notifier))
    app.state.replay_cache = BoundedLRUCache(replay_cache_size)
    app.state.rate_limiter = rate_limiter
    app.state.xtsystems_client = xtsystems_client
    app.state.clock = clock

    app.add_middleware(
        IpRateLimitMiddleware,
        limiter=rate_limiter,
        trust_forwarded_for=trust_forwarded_for,
    )
    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(integration_router)
    install_inbound_route(app, config.webhook_path)

    logger.info(
        "Webhook gateway ready: path=%s freshness=%ds rate_limit=%d/%ds",
        config.webhook_path,
        config.freshness_window_seconds,
        config.rate_limit.max_requests,
        config.rate_limit.window_seconds,
    )
    return app


def create_sender_app(
    config: DeliveryConfig | None = None,
    registry: WebhookRegistry | None = None,
    delivery_log: DeliveryLog | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create the webhook management and dispatch API.

    Middleware ordering (outermost to innermost):
    1. RequestIdMiddleware

    Args:
        config: Sender configuration. If None, loaded from the environment.
        registry: Optional subscription registry (for testing).
        delivery_log: Optional delivery log. JSONL file at
            config.delivery_log_path if None.
        http_client: Shared AsyncClient for deliveries (tests pass one with
            httpx.MockTransport). A short-lived client per attempt if None.
        sleep: Backoff sleep (for testing). asyncio.sleep if None.
        clock: Unix time source for envelopes and signatures.
    """
    if config is None:
        config = load_delivery_config()

    if registry is None:
        registry = WebhookRegistry(
            default_retry_limit=config.retry_limit,
            default_timeout_seconds=config.timeout_seconds,
        )

    if delivery_log is None:
        delivery_log = JsonlFileDeliveryLog(config.delivery_log_path)

    scheduler = RetryScheduler(
        delivery_log,
        sleep=sleep or asyncio.sleep,
        clock=clock,
        base_seconds=config.backoff_base_seconds,
        client=http_client,
    )
    dispatcher = EventDispatcher(registry, scheduler, clock=clock)

    if not config.api_keys:
        logger.warning("XTW_API_KEYS_JSON is empty; every management request will be rejected")

    configure_tracing()
    instrument_httpx()

    app = FastAPI(
        title="XTSystems Webhook Sender",
        version=__version__,
        description="Webhook subscriptions, signed delivery and delivery history",
    )

    app.state.service_name = SENDER_SERVICE_NAME
    app.state.delivery_config = config
    app.state.registry = registry
    app.state.delivery_log = delivery_log
    app.state.dispatcher = dispatcher

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    @app.on_event("shutdown")
    async def drain_dispatches() -> None:
        """Let in-flight fire-and-forget dispatches finish."""
        await dispatcher.drain()

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(events_router)

    return app
