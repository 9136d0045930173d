# mcp_gateway/tool_modules/__init__.py
from .health_tools import ToolUsageTracker, register_health_tools

__all__ = ["ToolUsageTracker", "register_health_tools"]
