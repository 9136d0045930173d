# mcp_gateway/sessions/session_data.py
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime, timezone


class IdentitySession(BaseModel):
    """
    An authenticated principal, stored under its external session identifier.

    Created by a successful OAuth exchange or by the admin API, looked up on
    every gated request, and removed on logout or on the first read after
    expires_at.
    """

    user_id: str = Field(description="Stable identifier of the user at the OAuth provider.")
    username: str
    email: Optional[str] = None

    # Opaque upstream credential, never interpreted by the gateway
    access_token: str

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime

    session_type: Literal["oauth", "api_key"] = "oauth"
    scopes: List[str] = Field(default_factory=list)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once expires_at lies strictly in the past."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at < now

    def ttl_seconds(self, now: Optional[datetime] = None) -> int:
        """Seconds left before expiry, never less than one."""
        now = now or datetime.now(timezone.utc)
        return max(1, int((self.expires_at - now).total_seconds()))

    def identity_props(self) -> dict:
        """Call-scoped metadata handed to the downstream MCP handler."""
        return {
            "user_id": self.user_id,
            "username": self.username,
            "email": self.email,
            "access_token": self.access_token,
        }
