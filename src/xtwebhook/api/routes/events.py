"""Event emission endpoint.

POST /v1/events accepts an event for the caller's tenant and returns 202
straight away. Fan-out is handed to EventDispatcher.dispatch() on the
server loop, so shutdown drains it; delivery failures end up in the
delivery log, never in this response.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from xtwebhook.api.auth import RequireTenantContext
from xtwebhook.services.webhooks.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Events"])


class EmitEventRequest(BaseModel):
    event_type: Annotated[str, Field(min_length=1, description="e.g. ticket.created")]
    data: dict[str, Any] = Field(default_factory=dict)


class EmitEventResponse(BaseModel):
    accepted: bool
    event_type: str
    subscriptions: int


@router.post("/events", response_model=EmitEventResponse, status_code=202)
async def emit_event(
    request_body: EmitEventRequest,
    tenant_ctx: RequireTenantContext,
    request: Request,
) -> EmitEventResponse:
    """Start fan-out of one event to the tenant's matching subscriptions."""
    dispatcher: EventDispatcher = request.app.state.dispatcher
    matching = len(dispatcher.registry.find(request_body.event_type, tenant_ctx.tenant_id))

    if matching:
        dispatcher.dispatch(request_body.event_type, request_body.data, tenant_ctx.tenant_id)

    logger.info(
        "Accepted %s for tenant %s (%d subscription(s))",
        request_body.event_type,
        tenant_ctx.tenant_id,
        matching,
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "event_type": request_body.event_type,
        },
    )
    return EmitEventResponse(
        accepted=True,
        event_type=request_body.event_type,
        subscriptions=matching,
    )
