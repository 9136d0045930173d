# mcp_gateway/auth/endpoints.py
import json
import logging
import time
from typing import Annotated, Optional
from uuid import uuid4

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from ..dependencies import get_http_client, get_services
from ..services import GatewayServices
from ..sessions import is_valid_session_id
from .oauth import OAuthExchangeError

logger = logging.getLogger(__name__)
auth_router = APIRouter()

OAUTH_STATE_KEY_PREFIX = "oauth_state:"


def _state_key(state: str) -> str:
    return f"{OAUTH_STATE_KEY_PREFIX}{state}"


@auth_router.get("/login", name="auth_login", response_class=RedirectResponse)
async def login(services: Annotated[GatewayServices, Depends(get_services)]):
    """Start the GitHub authorization-code flow."""
    state = str(uuid4())
    await services.kv_store.put(
        _state_key(state),
        json.dumps({"timestamp": time.time()}),
        ttl_seconds=services.settings.oauth_state_ttl_seconds,
    )
    logger.info(f"OAuth login started with state {state[:8]}...")
    return RedirectResponse(url=services.oauth_client.authorization_url(state), status_code=302)


@auth_router.get("/callback", name="auth_callback")
async def callback(
    request: Request,
    services: Annotated[GatewayServices, Depends(get_services)],
    http_client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    code: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
):
    """
    Complete the GitHub flow: consume the state, exchange the code, create an
    identity session and hand it to the browser as the session cookie.
    """
    if not code or not state:
        return JSONResponse({"error": "Missing code or state"}, status_code=400)

    if await services.kv_store.get(_state_key(state)) is None:
        logger.warning(f"OAuth callback with unknown or expired state {state[:8]}...")
        return JSONResponse({"error": "Invalid state"}, status_code=400)
    await services.kv_store.delete(_state_key(state))

    try:
        access_token = await services.oauth_client.exchange_code(http_client, code)
        user_info = await services.oauth_client.fetch_user_info(http_client, access_token)
    except OAuthExchangeError as e:
        logger.error(f"OAuth callback failed: {e}")
        return JSONResponse({"error": "Authentication failed"}, status_code=500)

    session_id, session = await services.session_store.create_session(
        user_id=user_info.id,
        username=user_info.display_name,
        email=user_info.email,
        access_token=access_token,
    )
    await services.audit_logger.record(session.user_id, "login", {"username": session.username})

    response = RedirectResponse(url=f"{services.settings.frontend_url.rstrip('/')}/auth/success", status_code=302)
    response.set_cookie(
        key=services.settings.session_cookie_name,
        value=session_id,
        max_age=services.settings.session_lifetime_seconds,
        path="/",
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
    )
    return response


@auth_router.post("/logout", name="auth_logout")
async def logout(request: Request, services: Annotated[GatewayServices, Depends(get_services)]):
    cookie_name = services.settings.session_cookie_name
    session_id = request.cookies.get(cookie_name)

    if session_id and is_valid_session_id(session_id):
        session = await services.session_store.load_session(session_id)
        await services.session_store.delete_session(session_id)
        if session is not None:
            await services.audit_logger.record(session.user_id, "logout")

    response = JSONResponse({"message": "Logged out successfully"})
    response.delete_cookie(key=cookie_name, path="/", httponly=True, secure=True, samesite="lax")
    return response
