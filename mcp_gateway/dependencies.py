# mcp_gateway/dependencies.py
import logging
from typing import Annotated, AsyncIterator, Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request, status

from .auth.gateway import AuthenticatedIdentity
from .services import GatewayServices

logger = logging.getLogger(__name__)


def get_services(request: Request) -> GatewayServices:
    services: Optional[GatewayServices] = getattr(request.app.state, "gateway", None)
    if services is None:
        logger.critical("Gateway services are not initialized on app.state.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway services are not available.",
        )
    return services


async def get_current_identity(
    request: Request,
    services: Annotated[GatewayServices, Depends(get_services)],
) -> AuthenticatedIdentity:
    """Authenticate the request by cookie or bearer token. Failures raise a 401 GatewayError."""
    return await services.session_gateway.authenticate(request)


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Outbound HTTP client for calls to the OAuth provider."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        yield client


async def get_admin_api_key(
    services: Annotated[GatewayServices, Depends(get_services)],
    x_admin_api_key: Annotated[
        Optional[str],
        Header(description="The API Key for accessing admin routes.")
    ] = None,
) -> str:
    """
    Validates admin API key authentication for protected admin endpoints.

    Returns the validated API key if authentication succeeds.
    Raises HTTPException with appropriate status codes for various failure scenarios.
    """
    admin_api_key = services.settings.admin_api_key
    if not admin_api_key:
        logger.critical("ADMIN_API_KEY is not configured on the server. Admin endpoints are effectively disabled.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API service is not configured properly (API Key missing on server).",
        )

    if not x_admin_api_key:
        logger.warning("Admin API: Missing X-Admin-API-Key header.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated: X-Admin-API-Key header missing.",
            headers={"WWW-Authenticate": 'Basic realm="Admin Area"'},
        )

    if x_admin_api_key != admin_api_key:
        logger.warning("Admin API: Invalid X-Admin-API-Key provided.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: Invalid API Key.",
            headers={"WWW-Authenticate": 'Basic realm="Admin Area"'},
        )

    return x_admin_api_key
