# mcp_gateway/storage/kv_store.py
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..settings import Settings

logger = logging.getLogger(__name__)


class KeyValueStoreUnavailableError(Exception):
    """Raised when the backing store cannot be reached."""


class AbstractKeyValueStore(ABC):
    """
    Abstract base class defining the key-value interface shared by identity
    sessions, downstream session mappings, OAuth state and audit entries.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None if absent or expired."""
        pass

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store value under key, optionally expiring after ttl_seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """Return all live keys starting with prefix."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """
    Process-local store with per-key expiry.

    Expired keys are treated as absent on read and dropped lazily.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def initialize(self) -> None:
        logger.info("InMemoryKeyValueStore initialized.")

    async def teardown(self) -> None:
        self._data.clear()
        logger.info("InMemoryKeyValueStore cleared.")

    async def ping(self) -> bool:
        return True

    def _live_entry(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live_entry(key)

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self, prefix: str) -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live_entry(key) is not None]


class RedisKeyValueStore(AbstractKeyValueStore):
    """Redis-backed store. TTLs map onto native key expiry."""

    def __init__(self, settings: Settings, redis_client: Optional[aioredis.Redis] = None):
        self._settings = settings
        self._redis_client: Optional[aioredis.Redis] = redis_client

    async def initialize(self) -> None:
        """
        Establishes connection to Redis server using the configured settings.
        Skips initialization if client already exists.
        """
        if self._redis_client is not None:
            logger.warning("Redis client already initialized. Skipping re-initialization.")
            return

        connection_params = {
            "host": self._settings.redis_host,
            "port": self._settings.redis_port,
            "db": self._settings.redis_db,
            "ssl": self._settings.redis_ssl,
            "socket_timeout": self._settings.redis_socket_timeout_seconds,
            "socket_connect_timeout": self._settings.redis_socket_timeout_seconds,
            "decode_responses": True,
        }
        if self._settings.redis_password:
            connection_params["password"] = self._settings.redis_password

        logger.info(
            f"Connecting to Redis at {connection_params['host']}:"
            f"{connection_params['port']}, DB: {connection_params['db']}"
        )
        try:
            self._redis_client = aioredis.Redis(**connection_params)
            await self._redis_client.ping()
            logger.info("Successfully connected to Redis and pinged.")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            self._redis_client = None
            raise KeyValueStoreUnavailableError(str(e)) from e

    async def teardown(self) -> None:
        if self._redis_client is not None:
            logger.info("Closing Redis connection.")
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info("Redis connection closed.")
        else:
            logger.info("No active Redis connection to close.")

    @property
    def client(self) -> aioredis.Redis:
        """Return the Redis client, raising if initialize() has not run."""
        if self._redis_client is None:
            raise KeyValueStoreUnavailableError("RedisKeyValueStore not initialized. Call initialize() first.")
        return self._redis_client

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            raise KeyValueStoreUnavailableError(str(e)) from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            logger.error(f"Error reading key '{key}' from Redis: {e}", exc_info=True)
            raise KeyValueStoreUnavailableError(str(e)) from e

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            logger.error(f"Error writing key '{key}' to Redis: {e}", exc_info=True)
            raise KeyValueStoreUnavailableError(str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.error(f"Error deleting key '{key}' from Redis: {e}", exc_info=True)
            raise KeyValueStoreUnavailableError(str(e)) from e

    async def list(self, prefix: str) -> List[str]:
        try:
            return [key async for key in self.client.scan_iter(match=f"{prefix}*")]
        except RedisError as e:
            logger.error(f"Error scanning prefix '{prefix}' in Redis: {e}", exc_info=True)
            raise KeyValueStoreUnavailableError(str(e)) from e


def create_kv_store(settings: Settings) -> AbstractKeyValueStore:
    """Build the store selected by settings.storage_backend."""
    if settings.storage_backend == "redis":
        return RedisKeyValueStore(settings)
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore()
    raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")
