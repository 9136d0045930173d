# mcp_gateway/cli/__init__.py
