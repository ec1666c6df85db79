"""FastAPI dependencies for the CRM API.

Services are built once by the composition root and stored on app.state;
endpoints receive them through these dependencies instead of importing
module-level singletons.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from src.crm.services.container import ServiceContainer

DEFAULT_ACTOR = "System"


def get_services(request: Request) -> ServiceContainer:
    """Retrieve the ServiceContainer from app.state, 503 if not available."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRM services not initialized",
        )
    return services


async def get_actor(x_crm_user: str | None = Header(default=None)) -> str:
    """Acting user for audit columns, from the X-CRM-User header."""
    return (x_crm_user or "").strip() or DEFAULT_ACTOR
