# mcp_gateway/audit/audit_log.py
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ..storage import AbstractKeyValueStore

logger = logging.getLogger(__name__)

AUDIT_KEY_PREFIX = "audit:"


class AuditEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditLogger:
    """Append-only audit trail kept in the key-value store with a retention TTL."""

    def __init__(self, kv_store: AbstractKeyValueStore, ttl_seconds: int = 30 * 24 * 60 * 60):
        self.kv_store = kv_store
        self.ttl_seconds = ttl_seconds

    async def record(self, user_id: str, action: str, details: Optional[Dict[str, Any]] = None) -> AuditEntry:
        entry = AuditEntry(user_id=user_id, action=action, details=details or {})
        await self.kv_store.put(
            f"{AUDIT_KEY_PREFIX}{entry.id}",
            entry.model_dump_json(),
            ttl_seconds=self.ttl_seconds,
        )
        logger.info(f"Audit: user '{user_id}' {action} {json.dumps(entry.details, default=str)}")
        return entry

    async def list_entries(self, user_id: Optional[str] = None) -> List[AuditEntry]:
        """All retained entries, oldest first, optionally restricted to one user."""
        entries: List[AuditEntry] = []
        for key in await self.kv_store.list(AUDIT_KEY_PREFIX):
            raw = await self.kv_store.get(key)
            if raw is None:
                continue
            entry = AuditEntry.model_validate_json(raw)
            if user_id is None or entry.user_id == user_id:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.timestamp)
