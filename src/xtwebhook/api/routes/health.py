"""Health check endpoint shared by the gateway and sender apps."""

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response.

    notifier is only reported by the gateway ("ready" with a bot token,
    "disabled" when notifications are only logged).
    """

    status: str
    service: str
    timestamp: str
    notifier: str | None = None


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
def get_health(request: Request) -> HealthResponse:
    """Liveness check; never touches downstream services."""
    return HealthResponse(
        status="ok",
        service=request.app.state.service_name,
        timestamp=datetime.now(UTC).isoformat(),
        notifier=getattr(request.app.state, "notifier_status", None),
    )
