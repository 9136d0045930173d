# mcp_gateway/mcp_handlers/__init__.py
"""
The `/api/mcp` endpoint and the pieces it routes through: the session-sticky
router and the downstream FastMCP handler.
"""

from .router import MessageKind, RoutedMessage, SessionStickyRouter
from .downstream import FastMCPDownstreamHandler
from .endpoint import GatewayMCPEndpoint

__all__ = [
    "MessageKind",
    "RoutedMessage",
    "SessionStickyRouter",
    "FastMCPDownstreamHandler",
    "GatewayMCPEndpoint",
]
