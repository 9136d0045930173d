# mcp_gateway/admin/__init__.py
from .endpoints import admin_router

__all__ = ["admin_router"]
