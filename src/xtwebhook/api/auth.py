"""Management API authentication and tenant context extraction.

API keys map to tenants (XTW_API_KEYS_JSON). A key may be sent either in
the X-XTSystems-API-Key header or as "Authorization: Bearer <key>", the
form used by the XTSystems setup tooling.

Fails closed on missing or unknown keys. Errors never reveal whether a
tenant exists. API keys are never logged.
"""

import hmac
import logging
from collections.abc import Mapping
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel

from xtwebhook.api.errors import HttpError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-XTSystems-API-Key"
BEARER_PREFIX = "Bearer "


class TenantContext(BaseModel):
    """Authenticated caller of the management API."""

    tenant_id: str


def _constant_time_lookup(provided_key: str, registry: Mapping[str, str]) -> str | None:
    """Find the tenant for an API key without short-circuiting on a match.

    Every registered key is compared with hmac.compare_digest.
    """
    matched: str | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, tenant_id in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched = tenant_id

    return matched


def _extract_api_key(request: Request) -> str | None:
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return api_key.strip()

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX) :].strip() or None
    return None


def authenticate_request(request: Request, api_keys: Mapping[str, str]) -> TenantContext:
    """Resolve the caller's tenant.

    Raises:
        HttpError: 401 if the key is missing or unknown.
    """
    api_key = _extract_api_key(request)
    if not api_key:
        raise HttpError(status_code=401, error="unauthorized", message="Missing API key")

    tenant_id = _constant_time_lookup(api_key, api_keys) if api_keys else None
    if tenant_id is None:
        logger.info(
            "Rejected management request with unknown API key",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        raise HttpError(status_code=401, error="unauthorized", message="Invalid API key")

    return TenantContext(tenant_id=tenant_id)


async def require_tenant_context(request: Request) -> TenantContext:
    """FastAPI dependency enforcing API key auth.

    Keys are read from the DeliveryConfig on app.state. The resolved context
    is stored on request.state.tenant_context.
    """
    api_keys: Mapping[str, str] = request.app.state.delivery_config.api_keys
    tenant_ctx = authenticate_request(request, api_keys)
    request.state.tenant_context = tenant_ctx
    return tenant_ctx


RequireTenantContext = Annotated[TenantContext, Depends(require_tenant_context)]
