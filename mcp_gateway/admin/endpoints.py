# mcp_gateway/admin/endpoints.py
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ..audit import AuditEntry
from ..dependencies import get_admin_api_key, get_services
from ..services import GatewayServices
from ..sessions import is_valid_session_id
from .models import RateLimitStatus, SessionIssueRequest, SessionIssueResponse

logger = logging.getLogger(__name__)

# Admin router for credentials and limiter state - requires admin API key authentication
admin_router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(get_admin_api_key)]
)


@admin_router.post("/sessions", response_model=SessionIssueResponse, status_code=status.HTTP_201_CREATED)
async def issue_session_endpoint(
    issue_request: SessionIssueRequest,
    services: Annotated[GatewayServices, Depends(get_services)]
):
    """Issue an API-key session usable as a bearer credential for programmatic access."""
    logger.info(f"API: Issuing api_key session for user '{issue_request.user_id}'")
    session_id, session = await services.session_store.create_session(
        user_id=issue_request.user_id,
        username=issue_request.username,
        email=issue_request.email,
        access_token=issue_request.access_token,
        lifetime_seconds=issue_request.lifetime_seconds,
        session_type="api_key",
        scopes=issue_request.scopes,
    )
    await services.audit_logger.record(session.user_id, "session_issued", {"session_type": "api_key"})
    return SessionIssueResponse(
        session_id=session_id,
        user_id=session.user_id,
        session_type=session.session_type,
        expires_at=session.expires_at,
    )


@admin_router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_session_endpoint(
    session_id: Annotated[str, Path(description="The session identifier to revoke")],
    services: Annotated[GatewayServices, Depends(get_services)]
):
    """Revoke a session. Returns 404 if it does not exist."""
    session = await services.session_store.load_session(session_id) if is_valid_session_id(session_id) else None
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    await services.session_store.delete_session(session_id)
    await services.audit_logger.record(session.user_id, "session_revoked", {"session_type": session.session_type})
    return None


@admin_router.get("/rate-limits/{user_id}", response_model=RateLimitStatus)
async def get_rate_limit_endpoint(
    user_id: Annotated[str, Path(description="The identity whose window to inspect")],
    services: Annotated[GatewayServices, Depends(get_services)]
):
    limiter = services.rate_limiter
    try:
        current_count = await limiter.peek(user_id)
    except Exception as e:
        logger.error(f"API: Rate limiter unavailable while inspecting '{user_id}': {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Rate limiter unavailable.")
    return RateLimitStatus(
        user_id=user_id,
        current_count=current_count,
        limit=limiter.max_requests,
        window_seconds=limiter.window_seconds,
    )


@admin_router.get("/audit", response_model=List[AuditEntry])
async def list_audit_entries_endpoint(
    services: Annotated[GatewayServices, Depends(get_services)],
    user_id: Annotated[Optional[str], Query(description="Restrict to one user.")] = None,
):
    """Retained audit entries, oldest first."""
    return await services.audit_logger.list_entries(user_id=user_id)
