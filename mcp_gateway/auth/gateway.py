# mcp_gateway/auth/gateway.py
import logging
from typing import Optional

from pydantic import BaseModel
from starlette.requests import HTTPConnection

from ..sessions import IdentitySession, IdentitySessionStore, is_valid_session_id
from .errors import (
    AuthenticationExpiredError,
    AuthenticationInvalidError,
    AuthenticationMissingError,
)

logger = logging.getLogger(__name__)


class AuthenticatedIdentity(BaseModel):
    """The resolved principal attached to a request."""

    session_id: str
    session: IdentitySession

    @property
    def user_id(self) -> str:
        return self.session.user_id


class SessionGateway:
    """
    Resolves the credential carried by a request into an IdentitySession.

    The session cookie wins over an `Authorization: Bearer` header when both
    are present; only one source is ever consulted.
    """

    def __init__(self, session_store: IdentitySessionStore, cookie_name: str = "hc_session"):
        self.session_store = session_store
        self.cookie_name = cookie_name

    def extract_credential(self, connection: HTTPConnection) -> Optional[str]:
        cookie_value = connection.cookies.get(self.cookie_name)
        if cookie_value:
            return cookie_value

        authorization = connection.headers.get("Authorization")
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return credentials.strip()
            logger.warning("Malformed Authorization header ignored.")
        return None

    async def resolve(self, session_id: str) -> AuthenticatedIdentity:
        """Look up session_id, deleting it inline if it has expired."""
        if not is_valid_session_id(session_id):
            logger.warning("Rejected credential with malformed session id.")
            raise AuthenticationInvalidError()

        try:
            session = await self.session_store.load_session(session_id)
        except Exception as e:
            # Never admit an identity that could not be verified
            logger.error(f"Session store unavailable while resolving session: {e}", exc_info=True)
            raise AuthenticationInvalidError("Unable to verify session") from e

        if session is None:
            logger.info(f"No session record for credential {session_id[:8]}...")
            raise AuthenticationInvalidError()

        if session.is_expired():
            logger.info(f"Session {session_id[:8]}... for user '{session.user_id}' expired at {session.expires_at.isoformat()}")
            try:
                await self.session_store.delete_session(session_id)
            except Exception as e:
                logger.error(f"Failed to delete expired session {session_id[:8]}...: {e}", exc_info=True)
            raise AuthenticationExpiredError()

        return AuthenticatedIdentity(session_id=session_id, session=session)

    async def authenticate(self, connection: HTTPConnection) -> AuthenticatedIdentity:
        """Resolve the request's credential and attach the identity to request state."""
        session_id = self.extract_credential(connection)
        if not session_id:
            raise AuthenticationMissingError()

        identity = await self.resolve(session_id)
        connection.state.session = identity.session
        connection.state.user_id = identity.user_id
        logger.debug(f"Authenticated user '{identity.user_id}' via session {session_id[:8]}...")
        return identity
