# mcp_gateway/rate_limiting/__init__.py
"""
Per-identity rate limiting for the MCP endpoint.
"""

from .models import RateLimitDecision
from .keyed_lock import KeyedLock
from .limiter import (
    AbstractRateLimiter,
    InMemoryRateLimiter,
    RedisRateLimiter,
    RateLimiterUnavailableError,
    create_rate_limiter,
)

__all__ = [
    "RateLimitDecision",
    "KeyedLock",
    "AbstractRateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimiterUnavailableError",
    "create_rate_limiter",
]
