# mcp_gateway/rate_limiting/models.py
import math
from typing import Dict

from pydantic import BaseModel, Field


class RateLimitDecision(BaseModel):
    """Outcome of one admission check for one identity."""

    allowed: bool
    remaining: int = Field(ge=0)
    reset_at: float = Field(description="Epoch seconds at which the current window ends.")
    limit: int

    @property
    def reset_at_epoch_seconds(self) -> int:
        return int(math.ceil(self.reset_at))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_epoch_seconds),
        }
