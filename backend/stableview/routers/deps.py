"""Shared router dependencies."""

from fastapi import HTTPException, Request, status

from ..services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Return the service container built at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return services
