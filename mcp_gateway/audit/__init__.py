# mcp_gateway/audit/__init__.py
from .audit_log import AuditEntry, AuditLogger

__all__ = ["AuditEntry", "AuditLogger"]
