"""Inbound XTSystems webhook endpoint.

Request lifecycle:
    RECEIVED -> VERIFIED -> ROUTED -> ACKNOWLEDGED
    RECEIVED -> REJECTED (401 missing_signature / stale_timestamp / bad_signature)

The signature is checked over the raw body bytes exactly as received; the
body is never re-serialized before verification. Routing is attempted once
the envelope verifies; the 200 response means "accepted and processed", not
"every channel notification succeeded".

The path is configurable, so the route is attached with add_api_route()
rather than a router decorator.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from xtwebhook.api.error_model import make_error_response
from xtwebhook.api.errors import HttpError
from xtwebhook.config import GatewayConfig
from xtwebhook.errors import EnvelopeError
from xtwebhook.observability.tracing import set_span_attributes
from xtwebhook.services.inbound.replay_cache import BoundedLRUCache
from xtwebhook.services.inbound.router import EventRouter
from xtwebhook.services.webhooks.envelope import EventEnvelope
from xtwebhook.services.webhooks.signing import (
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    verify_request,
)

logger = logging.getLogger(__name__)


async def receive_webhook(request: Request) -> Any:
    """Verify, deduplicate and route one inbound envelope."""
    state = request.app.state
    config: GatewayConfig = state.gateway_config
    router: EventRouter = state.event_router
    seen: BoundedLRUCache = state.replay_cache
    request_id = getattr(request.state, "request_id", None)

    body = await request.body()
    signature = request.headers.get(HEADER_SIGNATURE)

    verify_request(
        config.webhook_secret,
        body,
        signature,
        request.headers.get(HEADER_TIMESTAMP),
        now=state.clock(),
        freshness_window_seconds=config.freshness_window_seconds,
    )

    try:
        envelope = EventEnvelope.decode(body)
    except EnvelopeError as e:
        raise HttpError(status_code=400, error="invalid_envelope", message=str(e)) from e

    logger.info(
        "Received XTSystems webhook: %s (company_id=%s)",
        envelope.event_type,
        envelope.source_id,
        extra={"request_id": request_id, "event_type": envelope.event_type},
    )
    set_span_attributes({"xtw.event_type": envelope.event_type})

    dedupe_key = (signature or "").strip()
    if not seen.add_if_absent(dedupe_key):
        logger.info(
            "Duplicate delivery of %s acknowledged without re-notifying",
            envelope.event_type,
            extra={"request_id": request_id, "event_type": envelope.event_type},
        )
        return {
            "success": True,
            "duplicate": True,
            "message": "Webhook already processed",
        }

    try:
        result = await router.route(envelope)
    except Exception:
        seen.discard(dedupe_key)
        logger.exception(
            "Error processing XTSystems webhook %s",
            envelope.event_type,
            extra={"request_id": request_id, "event_type": envelope.event_type},
        )
        return make_error_response(
            request,
            error="internal_error",
            message="Internal server error",
            http_status=500,
        )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Webhook processed successfully",
            "event_type": result.event_type,
            "handled": result.handled,
        },
    )


def install_inbound_route(app: FastAPI, path: str) -> None:
    """Attach the POST-only receiver at the configured path."""
    app.add_api_route(
        path,
        receive_webhook,
        methods=["POST"],
        response_model=None,
        tags=["Inbound"],
        name="receive_webhook",
    )
