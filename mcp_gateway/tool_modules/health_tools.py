# mcp_gateway/tool_modules/health_tools.py
import json
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request
from pydantic import BaseModel, Field

from ..audit import AuditLogger

logger = logging.getLogger(__name__)

SESSION_INFO_URI = "mcp://resource/session-info"

VitalDataType = Literal["heart_rate", "blood_pressure", "temperature", "oxygen_saturation", "weight"]
ScanVitalType = Literal["heart_rate", "respiratory_rate"]

# Sample readings served until a personal data store integration exists
SAMPLE_VITALS: Dict[str, List[Dict[str, Any]]] = {
    "heart_rate": [
        {"timestamp": "2024-01-21T10:00:00Z", "value": 72, "unit": "bpm"},
        {"timestamp": "2024-01-21T10:30:00Z", "value": 75, "unit": "bpm"},
    ],
    "blood_pressure": [
        {"timestamp": "2024-01-21T10:00:00Z", "systolic": 120, "diastolic": 80, "unit": "mmHg"},
    ],
    "temperature": [{"timestamp": "2024-01-21T10:00:00Z", "value": 98.6, "unit": "F"}],
    "oxygen_saturation": [{"timestamp": "2024-01-21T10:00:00Z", "value": 98, "unit": "%"}],
    "weight": [{"timestamp": "2024-01-21T10:00:00Z", "value": 150, "unit": "lbs"}],
}

SCAN_RESULTS: Dict[str, Dict[str, Any]] = {
    "heart_rate": {"value": 72, "unit": "bpm", "confidence": 0.95},
    "respiratory_rate": {"value": 16, "unit": "breaths/min", "confidence": 0.95},
}


class ToolUsage(BaseModel):
    last_access_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tool_execution_count: int = 0


class ToolUsageTracker:
    """
    Per-identity tool usage, shared by every downstream session of that identity.

    Holds at most max_identities entries; the least recently active identity
    is forgotten first.
    """

    def __init__(self, max_identities: int = 10_000):
        if max_identities < 1:
            raise ValueError("max_identities must be at least 1.")
        self.max_identities = max_identities
        self._usage: "OrderedDict[str, ToolUsage]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._usage)

    def get(self, user_id: str) -> ToolUsage:
        return self._usage.get(user_id) or ToolUsage()

    def record_execution(self, user_id: str) -> ToolUsage:
        usage = self._usage.get(user_id)
        if usage is None:
            if len(self._usage) >= self.max_identities:
                evicted_id, _ = self._usage.popitem(last=False)
                logger.debug(f"Tool usage table full. Forgot least recently active identity '{evicted_id}'.")
            usage = self._usage[user_id] = ToolUsage()
        else:
            self._usage.move_to_end(user_id)
        usage.last_access_time = datetime.now(timezone.utc)
        usage.tool_execution_count += 1
        return usage


def current_identity() -> Dict[str, Any]:
    """Identity the gateway attached to the HTTP request carrying this MCP message."""
    try:
        request = get_http_request()
    except RuntimeError as e:
        raise ToolError("No HTTP request is associated with this MCP call.") from e
    identity = request.scope.get("state", {}).get("gateway_identity")
    if not identity or not identity.get("user_id"):
        raise ToolError("No authenticated identity is attached to this MCP call.")
    return identity


async def _record_tool_execution(
    tool_name: str,
    identity: Dict[str, Any],
    audit_logger: AuditLogger,
    tracker: ToolUsageTracker,
    params: Dict[str, Any],
) -> ToolUsage:
    usage = tracker.record_execution(identity["user_id"])
    await audit_logger.record(
        identity["user_id"],
        "tool_execution",
        {"tool": tool_name, "params": params, "executionCount": usage.tool_execution_count},
    )
    return usage


async def fetch_vitals(
    identity: Dict[str, Any],
    data_types: List[str],
    audit_logger: AuditLogger,
    tracker: ToolUsageTracker,
) -> Dict[str, Any]:
    """Readings for each requested type; unknown types are skipped."""
    await _record_tool_execution(
        "solid_fetch_vitals", identity, audit_logger, tracker, {"data_types": list(data_types)}
    )
    return {data_type: SAMPLE_VITALS[data_type] for data_type in data_types if data_type in SAMPLE_VITALS}


async def prepare_vitals_scan(
    identity: Dict[str, Any],
    vital_type: str,
    duration: int,
    base_url: str,
    audit_logger: AuditLogger,
    tracker: ToolUsageTracker,
) -> Dict[str, Any]:
    if vital_type not in SCAN_RESULTS:
        raise ToolError(f"Unsupported vital type '{vital_type}'.")
    await _record_tool_execution(
        "vitals_scan", identity, audit_logger, tracker, {"vital_type": vital_type, "duration": duration}
    )
    return {
        "status": "ready",
        "instructions": f"Please position your finger on the camera lens for {duration} seconds",
        "scanUrl": f"{base_url.rstrip('/')}/scan/{vital_type}",
        "mockResult": dict(SCAN_RESULTS[vital_type]),
    }


def describe_session(identity: Dict[str, Any], tracker: ToolUsageTracker) -> Dict[str, Any]:
    usage = tracker.get(identity["user_id"])
    return {
        "userId": identity["user_id"],
        "username": identity.get("username"),
        "lastAccessTime": usage.last_access_time.isoformat(),
        "toolExecutionCount": usage.tool_execution_count,
    }


def register_health_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
    base_url: str,
    tracker: Optional[ToolUsageTracker] = None,
) -> ToolUsageTracker:
    """Attach the health tools and the session-info resource to mcp."""
    tracker = tracker if tracker is not None else ToolUsageTracker()

    @mcp.tool(name="solid_fetch_vitals", description="Fetch latest vitals from the user's Solid Pod")
    async def solid_fetch_vitals(
        data_types: Annotated[List[VitalDataType], Field(description="Types of health data to fetch")],
    ) -> Dict[str, Any]:
        identity = current_identity()
        logger.info(f"Tool 'solid_fetch_vitals' called by user '{identity['user_id']}' for {data_types}")
        return await fetch_vitals(identity, data_types, audit_logger, tracker)

    @mcp.tool(name="vitals_scan", description="Trigger a camera-based vitals scan.")
    async def vitals_scan(
        vital_type: Annotated[ScanVitalType, Field(description="Type of vital to scan")],
        duration: Annotated[int, Field(ge=10, le=60, description="Scan duration in seconds")] = 30,
    ) -> Dict[str, Any]:
        identity = current_identity()
        logger.info(f"Tool 'vitals_scan' called by user '{identity['user_id']}' for {vital_type} ({duration}s)")
        return await prepare_vitals_scan(identity, vital_type, duration, base_url, audit_logger, tracker)

    @mcp.resource(SESSION_INFO_URI, name="session-info", mime_type="application/json")
    def session_info() -> str:
        return json.dumps(describe_session(current_identity(), tracker), indent=2)

    logger.info("Registered health tools: solid_fetch_vitals, vitals_scan, session-info")
    return tracker
