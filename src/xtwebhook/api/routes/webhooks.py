"""Webhook subscription management routes.

All endpoints are tenant-scoped by API key. A subscription owned by another
tenant is indistinguishable from a missing one (404).

Secrets are never returned, except once in the create response when the
server generated the secret.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from xtwebhook.api.auth import RequireTenantContext
from xtwebhook.services.webhooks.delivery_log import DeliveryLog
from xtwebhook.services.webhooks.dispatcher import EventDispatcher
from xtwebhook.services.webhooks.registry import (
    CreateWebhookInput,
    UpdateWebhookInput,
    WebhookRegistry,
)

router = APIRouter(prefix="/v1", tags=["Webhooks"])


class CreateWebhookRequest(BaseModel):
    """Request body for POST /v1/webhooks."""

    url: Annotated[str, Field(description="Destination URL for webhook delivery")]
    events: Annotated[list[str], Field(description="Event types to subscribe to")]
    secret: str | None = Field(default=None, description="Shared secret; generated if omitted")
    name: str | None = None
    active: bool = True
    retry_limit: int | None = Field(default=None, gt=0)
    timeout_seconds: int | None = Field(default=None, gt=0)
    headers: dict[str, str] | None = Field(
        default=None, description="Custom headers merged into every delivery"
    )


class UpdateWebhookRequest(BaseModel):
    """Request body for PATCH /v1/webhooks/{id}; omitted fields are unchanged."""

    url: str | None = None
    events: list[str] | None = None
    secret: str | None = None
    name: str | None = None
    active: bool | None = None
    retry_limit: int | None = Field(default=None, gt=0)
    timeout_seconds: int | None = Field(default=None, gt=0)
    headers: dict[str, str] | None = None


class WebhookTestRequest(BaseModel):
    data: dict[str, Any] | None = None


def _registry(request: Request) -> WebhookRegistry:
    registry: WebhookRegistry = request.app.state.registry
    return registry


@router.get("/webhooks")
def list_webhooks(tenant_ctx: RequireTenantContext, request: Request) -> list[dict[str, Any]]:
    """List the caller's subscriptions, oldest first."""
    return [s.to_public_dict() for s in _registry(request).list_webhooks(tenant_ctx.tenant_id)]


@router.post("/webhooks", status_code=201)
def create_webhook(
    request_body: CreateWebhookRequest,
    tenant_ctx: RequireTenantContext,
    request: Request,
) -> dict[str, Any]:
    """Create a subscription for the caller's tenant."""
    subscription = _registry(request).create(
        tenant_ctx.tenant_id,
        CreateWebhookInput(
            url=request_body.url,
            events=request_body.events,
            secret=request_body.secret,
            name=request_body.name,
            active=request_body.active,
            retry_limit=request_body.retry_limit,
            timeout_seconds=request_body.timeout_seconds,
            custom_headers=request_body.headers,
        ),
    )

    body = subscription.to_public_dict()
    if not request_body.secret:
        body["secret"] = subscription.secret
    return body


@router.get("/webhooks/{webhook_id}")
def get_webhook(
    webhook_id: str, tenant_ctx: RequireTenantContext, request: Request
) -> dict[str, Any]:
    return _registry(request).get(webhook_id, tenant_ctx.tenant_id).to_public_dict()


@router.patch("/webhooks/{webhook_id}")
def update_webhook(
    webhook_id: str,
    request_body: UpdateWebhookRequest,
    tenant_ctx: RequireTenantContext,
    request: Request,
) -> dict[str, Any]:
    """Replace the supplied fields of a subscription."""
    updated = _registry(request).update(
        webhook_id,
        tenant_ctx.tenant_id,
        UpdateWebhookInput(
            url=request_body.url,
            events=request_body.events,
            secret=request_body.secret,
            name=request_body.name,
            active=request_body.active,
            retry_limit=request_body.retry_limit,
            timeout_seconds=request_body.timeout_seconds,
            custom_headers=request_body.headers,
        ),
    )
    return updated.to_public_dict()


@router.delete("/webhooks/{webhook_id}", status_code=204)
def delete_webhook(
    webhook_id: str, tenant_ctx: RequireTenantContext, request: Request
) -> Response:
    _registry(request).delete(webhook_id, tenant_ctx.tenant_id)
    return Response(status_code=204)


@router.get("/webhooks/{webhook_id}/deliveries")
def list_deliveries(
    webhook_id: str, tenant_ctx: RequireTenantContext, request: Request
) -> list[dict[str, Any]]:
    """Delivery history of one subscription, oldest first."""
    _registry(request).get(webhook_id, tenant_ctx.tenant_id)
    delivery_log: DeliveryLog = request.app.state.delivery_log
    return [a.to_dict() for a in delivery_log.list_for_webhook(webhook_id)]


@router.post("/webhooks/{webhook_id}/test")
async def send_test_delivery(
    webhook_id: str,
    tenant_ctx: RequireTenantContext,
    request: Request,
    request_body: WebhookTestRequest | None = None,
) -> dict[str, Any]:
    """Synchronously deliver one webhook.test event to this subscription only."""
    dispatcher: EventDispatcher = request.app.state.dispatcher
    attempt = await dispatcher.test_webhook(
        webhook_id,
        tenant_ctx.tenant_id,
        data=request_body.data if request_body is not None else None,
    )
    return {"success": attempt.delivered, "delivery": attempt.to_dict()}
