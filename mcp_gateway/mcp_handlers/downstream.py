# mcp_gateway/mcp_handlers/downstream.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastmcp import FastMCP
from fastmcp.server.http import set_http_request
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.requests import Request as StarletteRequest
from starlette.types import Receive, Scope, Send

from ..audit import AuditLogger
from ..settings import Settings
from ..tool_modules import ToolUsageTracker, register_health_tools

logger = logging.getLogger(__name__)

MCP_SERVER_NAME = "medlock-server"


class FastMCPDownstreamHandler:
    """
    ASGI callable serving the MCP Streamable HTTP transport for one FastMCP
    server. Downstream sessions are minted and tracked by the SDK's session
    manager, which must be running (see run()) before requests arrive.
    """

    def __init__(self, mcp: FastMCP, usage_tracker: Optional[ToolUsageTracker] = None):
        self.mcp = mcp
        self.usage_tracker = usage_tracker
        self.session_manager = StreamableHTTPSessionManager(app=mcp._mcp_server)
        logger.info("StreamableHTTPSessionManager instance created.")

    @classmethod
    def from_settings(cls, settings: Settings, audit_logger: AuditLogger) -> "FastMCPDownstreamHandler":
        """Build the FastMCP server that sits behind the gateway and register its tools."""
        mcp = FastMCP(
            name=MCP_SERVER_NAME,
            instructions="Medlock health MCP server. The caller's identity is attached by the gateway to every request.",
            mask_error_details=not settings.debug_mode,
        )
        usage_tracker = register_health_tools(mcp, audit_logger, base_url=settings.base_url)
        logger.info(f"FastMCP instance '{MCP_SERVER_NAME}' created with ID: {id(mcp)}")
        return cls(mcp, usage_tracker)

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        async with self.session_manager.run():
            logger.info("FastMCP HTTP session manager running.")
            yield
        logger.info("FastMCP HTTP session manager stopped.")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        with set_http_request(StarletteRequest(scope, receive)):
            await self.session_manager.handle_request(scope, receive, send)
