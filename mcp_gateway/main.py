# mcp_gateway/main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

load_dotenv()

from .admin import admin_router
from .auth.endpoints import auth_router
from .auth.errors import GatewayError, gateway_error_handler
from .auth.gateway import AuthenticatedIdentity
from .dependencies import get_current_identity, get_services
from .mcp_handlers import GatewayMCPEndpoint
from .services import GatewayServices
from .settings import Settings, settings

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else settings.log_level,
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

CORS_PATH_PREFIXES = ("/api/", "/auth/")


class SecureHeadersMiddleware:
    """Adds the standard security headers to every HTTP response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in SECURITY_HEADERS.items():
                    headers.setdefault(name, value)
            await send(message)

        await self.app(scope, receive, send_with_headers)


class PathScopedCORSMiddleware:
    """CORSMiddleware applied only to the API and auth surfaces."""

    def __init__(self, app: ASGIApp, allowed_origins):
        self.app = app
        self.cors_app = CORSMiddleware(
            app,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "mcp-session-id", "mcp-protocol-version"],
            expose_headers=[
                "mcp-session-id",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
            ],
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(CORS_PATH_PREFIXES):
            await self.cors_app(scope, receive, send)
            return
        await self.app(scope, receive, send)


def create_app(services: Optional[GatewayServices] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the gateway application.

    When services is given (as in tests) it is used as-is, otherwise it is
    built from settings during startup.
    """
    app_settings = app_settings or (services.settings if services else settings)

    @asynccontextmanager
    async def gateway_lifespan(app_instance: FastAPI):
        logger.info(f"{app_settings.app_name} startup initiated. Storage: {app_settings.storage_backend}.")
        gateway_services = services or GatewayServices.from_settings(app_settings)
        try:
            async with gateway_services.running():
                app_instance.state.gateway = gateway_services
                logger.info(f"{app_settings.app_name} ready.")
                yield
        except Exception as e:
            logger.error(f"Gateway lifecycle error: {e}", exc_info=True)
            raise
        logger.info(f"{app_settings.app_name} shutdown complete.")

    app = FastAPI(
        title=app_settings.app_name,
        debug=app_settings.debug_mode,
        version=app_settings.app_version,
        lifespan=gateway_lifespan,
    )
    if services is not None:
        app.state.gateway = services

    app.add_middleware(PathScopedCORSMiddleware, allowed_origins=app_settings.allowed_origins)
    app.add_middleware(SecureHeadersMiddleware)
    app.add_exception_handler(GatewayError, gateway_error_handler)

    @app.get("/")
    async def root_api():
        return {"message": f"Welcome to {app_settings.app_name}!"}

    @app.get("/health")
    async def health_api(gateway: Annotated[GatewayServices, Depends(get_services)]):
        """Health check endpoint that validates storage backend connectivity."""
        store_statuses: Dict[str, str] = {}
        all_healthy = True
        try:
            await gateway.kv_store.ping()
            store_statuses["kv_store"] = "healthy"
        except Exception as e:
            store_statuses["kv_store"] = f"unhealthy: {e}"
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "degraded",
            "version": app_settings.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "storage_backend": app_settings.storage_backend,
            "details": store_statuses,
        }

    @app.get("/test-auth")
    async def test_auth_api(identity: Annotated[AuthenticatedIdentity, Depends(get_current_identity)]):
        return {"message": "Authenticated", "user_id": identity.user_id}

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(admin_router)
    app.add_route("/api/mcp", GatewayMCPEndpoint, methods=["GET", "POST", "DELETE"])

    logger.info(f"{app_settings.app_name} initialized. Routers mounted.")
    return app


app = create_app()
