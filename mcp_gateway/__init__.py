# mcp_gateway/__init__.py
"""Authenticated, rate-limited gateway in front of a Model Context Protocol server."""
