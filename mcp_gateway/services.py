# mcp_gateway/services.py
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Optional

from starlette.types import ASGIApp

from .audit import AuditLogger
from .auth.gateway import SessionGateway
from .auth.oauth import GitHubOAuthClient
from .mcp_handlers.downstream import FastMCPDownstreamHandler
from .mcp_handlers.router import SessionStickyRouter
from .rate_limiting import AbstractRateLimiter, create_rate_limiter
from .sessions import DownstreamSessionMap, IdentitySessionStore
from .settings import Settings
from .storage import AbstractKeyValueStore, create_kv_store

logger = logging.getLogger(__name__)


class GatewayServices:
    """
    Everything a request handler needs, built once per application and
    reachable from handlers through `app.state.gateway`.
    """

    def __init__(
        self,
        settings: Settings,
        kv_store: AbstractKeyValueStore,
        rate_limiter: Optional[AbstractRateLimiter] = None,
        downstream_handler: Optional[ASGIApp] = None,
        oauth_client: Optional[GitHubOAuthClient] = None,
    ):
        self.settings = settings
        self.kv_store = kv_store
        self.rate_limiter = rate_limiter or create_rate_limiter(settings, kv_store)

        self.session_store = IdentitySessionStore(kv_store, settings.session_lifetime_seconds)
        self.session_gateway = SessionGateway(self.session_store, settings.session_cookie_name)
        self.session_map = DownstreamSessionMap(kv_store, settings.mcp_session_ttl_seconds)
        self.router = SessionStickyRouter(self.session_map)
        self.audit_logger = AuditLogger(kv_store, settings.audit_ttl_seconds)

        self.oauth_client = oauth_client or GitHubOAuthClient(
            client_id=settings.oauth_client_id,
            client_secret=settings.oauth_client_secret,
            redirect_uri=f"{settings.base_url.rstrip('/')}/auth/callback",
        )
        self.downstream_handler = downstream_handler or FastMCPDownstreamHandler.from_settings(
            settings, self.audit_logger
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayServices":
        return cls(settings, create_kv_store(settings))

    @asynccontextmanager
    async def running(self) -> AsyncIterator["GatewayServices"]:
        """Initialize the store, limiter sweeper and downstream manager; tear them down in reverse."""
        async with AsyncExitStack() as stack:
            await self.kv_store.initialize()
            stack.push_async_callback(self.kv_store.teardown)
            logger.info(f"Key-value store '{type(self.kv_store).__name__}' initialized.")

            await self.rate_limiter.start()
            stack.push_async_callback(self.rate_limiter.stop)
            logger.info(f"Rate limiter '{type(self.rate_limiter).__name__}' started.")

            if hasattr(self.downstream_handler, "run"):
                await stack.enter_async_context(self.downstream_handler.run())
            else:
                logger.info("Downstream handler has no lifecycle. Proceeding without it.")

            yield self
            logger.info("Gateway services shutting down.")
        logger.info("All gateway services torn down.")
