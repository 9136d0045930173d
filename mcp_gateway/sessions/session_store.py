# mcp_gateway/sessions/session_store.py
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import uuid4

from pydantic import ValidationError

from ..storage import AbstractKeyValueStore
from .session_data import IdentitySession

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"

_UUID4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_session_id(session_id: str) -> bool:
    """Session identifiers are UUID4 strings."""
    return bool(_UUID4_PATTERN.match(session_id))


class IdentitySessionStore:
    """Persists IdentitySession records in the key-value store, keyed by session id."""

    def __init__(self, kv_store: AbstractKeyValueStore, session_lifetime_seconds: int = 24 * 60 * 60):
        self.kv_store = kv_store
        self.session_lifetime_seconds = session_lifetime_seconds
        logger.info(
            f"IdentitySessionStore initialized with store: {type(kv_store).__name__}, "
            f"lifetime: {session_lifetime_seconds}s"
        )

    def _construct_session_key(self, session_id: str) -> str:
        if not session_id:
            raise ValueError("session_id is required to construct a session key.")
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def create_session(
        self,
        user_id: str,
        username: str,
        access_token: str,
        email: Optional[str] = None,
        lifetime_seconds: Optional[int] = None,
        session_type: str = "oauth",
        scopes: Optional[List[str]] = None,
    ) -> Tuple[str, IdentitySession]:
        """Mint a new session id, persist the session and return both."""
        now = datetime.now(timezone.utc)
        lifetime = lifetime_seconds or self.session_lifetime_seconds
        session = IdentitySession(
            user_id=user_id,
            username=username,
            email=email,
            access_token=access_token,
            created_at=now,
            expires_at=now + timedelta(seconds=lifetime),
            session_type=session_type,
            scopes=scopes or [],
        )
        session_id = str(uuid4())
        await self.save_session(session_id, session)
        logger.info(f"Created {session_type} session for user '{user_id}' expiring at {session.expires_at.isoformat()}")
        return session_id, session

    async def save_session(self, session_id: str, session: IdentitySession) -> None:
        await self.kv_store.put(
            self._construct_session_key(session_id),
            session.model_dump_json(),
            ttl_seconds=session.ttl_seconds(),
        )

    async def load_session(self, session_id: str) -> Optional[IdentitySession]:
        """
        Return the stored session, expired or not, or None when absent.

        Store errors propagate so callers can decide how to fail.
        """
        raw = await self.kv_store.get(self._construct_session_key(session_id))
        if raw is None:
            return None
        try:
            return IdentitySession.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding undecodable session record '{session_id[:8]}...': {e}")
            return None

    async def delete_session(self, session_id: str) -> None:
        await self.kv_store.delete(self._construct_session_key(session_id))
        logger.info(f"Session deleted: {session_id[:8]}...")
