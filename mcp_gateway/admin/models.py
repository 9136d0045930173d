# mcp_gateway/admin/models.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SessionIssueRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Stable identifier of the user the session belongs to.")
    username: str = Field(..., min_length=1)
    email: Optional[str] = None
    access_token: str = Field("", description="Opaque upstream credential carried with the session.")
    lifetime_seconds: Optional[int] = Field(None, ge=60, description="Defaults to the configured session lifetime.")
    scopes: List[str] = Field(default_factory=list)


class SessionIssueResponse(BaseModel):
    session_id: str
    user_id: str
    session_type: str
    expires_at: datetime


class RateLimitStatus(BaseModel):
    user_id: str
    current_count: int
    limit: int
    window_seconds: float
