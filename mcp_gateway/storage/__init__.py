# mcp_gateway/storage/__init__.py

"""Storage module initialization.

Provides the key-value store abstraction used by sessions, downstream
session mappings, OAuth state and the audit log.
"""

from .kv_store import (
    AbstractKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    KeyValueStoreUnavailableError,
    create_kv_store,
)

__all__ = [
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "KeyValueStoreUnavailableError",
    "create_kv_store",
]
