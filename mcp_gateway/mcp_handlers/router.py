# mcp_gateway/mcp_handlers/router.py
import json
import logging
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel

from ..auth.errors import MalformedRequestBodyError
from ..sessions import DownstreamSessionMap

logger = logging.getLogger(__name__)

MCP_SESSION_HEADER = b"mcp-session-id"

RawHeaders = List[Tuple[bytes, bytes]]


class MessageKind(str, Enum):
    INITIALIZE = "initialize"
    CONTINUATION = "continuation"
    MALFORMED = "malformed"


class RoutedMessage(BaseModel):
    kind: MessageKind
    method: Optional[str] = None
    request_id: Any = None


class SessionStickyRouter:
    """
    Keeps each identity's JSON-RPC traffic on one downstream MCP session.

    Lifecycle per identity: no mapping until an initialize succeeds, then the
    downstream-minted id is reused until its TTL lapses or it is invalidated.
    """

    def __init__(self, session_map: DownstreamSessionMap):
        self.session_map = session_map

    @staticmethod
    def _parse(body: bytes) -> List[dict]:
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedRequestBodyError(f"Body is not valid JSON: {e}") from e

        if isinstance(payload, dict):
            return [payload]
        if isinstance(payload, list) and payload and all(isinstance(item, dict) for item in payload):
            return payload
        raise MalformedRequestBodyError("Body is not a JSON-RPC object or batch")

    def classify(self, body: bytes) -> RoutedMessage:
        """Decide whether body starts a new downstream session or continues one."""
        try:
            messages = self._parse(body)
        except MalformedRequestBodyError as e:
            logger.debug(f"Forwarding malformed body unchanged: {e.message}")
            return RoutedMessage(kind=MessageKind.MALFORMED)

        first = messages[0]
        methods = [m.get("method") for m in messages]
        if "initialize" in methods:
            return RoutedMessage(kind=MessageKind.INITIALIZE, method="initialize", request_id=first.get("id"))
        method = first.get("method")
        return RoutedMessage(
            kind=MessageKind.CONTINUATION,
            method=method if isinstance(method, str) else None,
            request_id=first.get("id"),
        )

    async def resolve_downstream_session_id(self, user_id: str, message: RoutedMessage) -> Optional[str]:
        """
        The session id to present downstream, or None for an initialize.

        Continuations without a mapping get the deterministic fallback id so
        downstream reports "session not found" and the client re-initializes.
        """
        if message.kind != MessageKind.CONTINUATION:
            return None
        try:
            stored_session_id = await self.session_map.get(user_id)
        except Exception as e:
            logger.error(f"Downstream session lookup failed for user '{user_id}': {e}", exc_info=True)
            stored_session_id = None
        if stored_session_id:
            return stored_session_id
        logger.info(f"No downstream session mapped for user '{user_id}'. Using fallback id.")
        return self.session_map.fallback_session_id(user_id)

    @staticmethod
    def apply_session_header(raw_headers: RawHeaders, downstream_session_id: Optional[str]) -> RawHeaders:
        """Replace any client-supplied mcp-session-id with the routed one (or none)."""
        headers = [(k, v) for k, v in raw_headers if k.lower() != MCP_SESSION_HEADER]
        if downstream_session_id:
            headers.append((MCP_SESSION_HEADER, downstream_session_id.encode("latin-1")))
        return headers

    async def record_response(
        self,
        user_id: str,
        message: RoutedMessage,
        status_code: Optional[int],
        downstream_session_id: Optional[str],
    ) -> bool:
        """Persist the mapping after a successful initialize. Returns True if one was stored."""
        if message.kind != MessageKind.INITIALIZE:
            return False
        if status_code is None or not 200 <= status_code < 300:
            logger.info(f"Initialize for user '{user_id}' failed downstream (status {status_code}). Mapping unchanged.")
            return False
        if not downstream_session_id:
            logger.warning(f"Initialize for user '{user_id}' succeeded without a session id. Mapping unchanged.")
            return False
        await self.session_map.save(user_id, downstream_session_id)
        return True

    async def invalidate(self, user_id: str) -> None:
        await self.session_map.invalidate(user_id)
