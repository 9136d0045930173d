# mcp_gateway/sessions/mcp_session_map.py
import logging
from typing import Optional

from ..storage import AbstractKeyValueStore

logger = logging.getLogger(__name__)

MCP_SESSION_KEY_PREFIX = "mcp-session:"
FALLBACK_SESSION_PREFIX = "user-"


class DownstreamSessionMap:
    """
    Maps an identity to the session id minted by the downstream MCP handler.

    At most one mapping exists per identity. It is overwritten on every
    successful initialize and expires after its own TTL.
    """

    def __init__(self, kv_store: AbstractKeyValueStore, ttl_seconds: int = 7 * 24 * 60 * 60):
        self.kv_store = kv_store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _construct_key(user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required to construct a downstream session key.")
        return f"{MCP_SESSION_KEY_PREFIX}{user_id}"

    @staticmethod
    def fallback_session_id(user_id: str) -> str:
        """
        Deterministic id for identities without a mapping.

        Downstream-minted ids are hex UUIDs, so this never addresses a real
        session and downstream answers "session not found".
        """
        return f"{FALLBACK_SESSION_PREFIX}{user_id}"

    async def get(self, user_id: str) -> Optional[str]:
        return await self.kv_store.get(self._construct_key(user_id))

    async def save(self, user_id: str, downstream_session_id: str) -> None:
        await self.kv_store.put(self._construct_key(user_id), downstream_session_id, ttl_seconds=self.ttl_seconds)
        logger.info(f"Mapped user '{user_id}' to downstream session '{downstream_session_id}' (TTL {self.ttl_seconds}s)")

    async def invalidate(self, user_id: str) -> None:
        await self.kv_store.delete(self._construct_key(user_id))
        logger.info(f"Invalidated downstream session mapping for user '{user_id}'")
