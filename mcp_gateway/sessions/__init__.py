# mcp_gateway/sessions/__init__.py
"""
Session management module for the MCP Gateway.

Identity sessions (who is calling) and downstream session mappings (which
MCP session their messages continue) both live in the key-value store.
"""

from .session_data import IdentitySession
from .session_store import IdentitySessionStore, is_valid_session_id
from .mcp_session_map import DownstreamSessionMap

__all__ = [
    "IdentitySession",
    "IdentitySessionStore",
    "is_valid_session_id",
    "DownstreamSessionMap",
]
