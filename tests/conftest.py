# tests/conftest.py
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
import pytest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mcp_gateway.main import create_app
from mcp_gateway.rate_limiting import InMemoryRateLimiter
from mcp_gateway.services import GatewayServices
from mcp_gateway.settings import Settings
from mcp_gateway.storage import InMemoryKeyValueStore

logger = logging.getLogger("GatewayTests")

BASE_URL = "http://testserver"
MCP_PROTOCOL_VERSION = "2025-03-26"
TEST_ADMIN_API_KEY = "test-admin-key"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDownstreamMCP:
    """
    ASGI stand-in for the downstream MCP handler.

    Mints a hex session id on initialize and answers 404 for any session id
    it did not mint, like the SDK's streamable HTTP session manager.
    """

    def __init__(self):
        self.sessions = set()
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        body = await request.body()
        session_id = request.headers.get("mcp-session-id")
        self.calls.append({
            "method": scope["method"],
            "session_id": session_id,
            "body": body,
            "identity": scope.get("state", {}).get("gateway_identity"),
        })
        if self.fail_with is not None:
            raise self.fail_with

        if scope["method"] == "DELETE":
            if session_id in self.sessions:
                self.sessions.discard(session_id)
                response = Response(status_code=200)
            else:
                response = self._session_not_found()
        elif scope["method"] == "GET":
            response = JSONResponse({"stream": "opened", "session_id": session_id})
        else:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if not isinstance(payload, dict):
                response = JSONResponse(
                    {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}},
                    status_code=400,
                )
            elif payload.get("method") == "initialize":
                new_session_id = uuid4().hex
                self.sessions.add(new_session_id)
                response = JSONResponse(
                    {
                        "jsonrpc": "2.0",
                        "id": payload.get("id"),
                        "result": {
                            "protocolVersion": MCP_PROTOCOL_VERSION,
                            "capabilities": {"tools": {}},
                            "serverInfo": {"name": "medlock-server", "version": "v0.1.0"},
                        },
                    },
                    headers={"mcp-session-id": new_session_id},
                )
            elif session_id not in self.sessions:
                response = self._session_not_found()
            else:
                response = JSONResponse(
                    {"jsonrpc": "2.0", "id": payload.get("id"), "result": {"tools": []}},
                    headers={"mcp-session-id": session_id},
                )
        await response(scope, receive, send)

    @staticmethod
    def _session_not_found() -> Response:
        return JSONResponse(
            {"jsonrpc": "2.0", "id": "server-error", "error": {"code": -32600, "message": "Session not found"}},
            status_code=404,
        )


class GatewayMCPClient:
    """Minimal MCP-over-HTTP client speaking to the gateway's /api/mcp endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, token: Optional[str] = None, cookie: Optional[str] = None):
        self.http_client = http_client
        self.token = token
        self.cookie = cookie
        self.mcp_session_id: Optional[str] = None
        self.request_counter = 0

    def _headers(self, custom_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream", "MCP-Protocol-Version": MCP_PROTOCOL_VERSION}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.cookie:
            headers["Cookie"] = f"hc_session={self.cookie}"
        if self.mcp_session_id:
            headers["Mcp-Session-Id"] = self.mcp_session_id
        headers.update(custom_headers or {})
        return headers

    async def post(self, payload: Any, custom_headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        response = await self.http_client.post("/api/mcp", json=payload, headers=self._headers(custom_headers))
        new_session_id = response.headers.get("mcp-session-id")
        if new_session_id and new_session_id != self.mcp_session_id:
            logger.info(f"MCP Session ID updated from {self.mcp_session_id} to {new_session_id}")
            self.mcp_session_id = new_session_id
        return response

    async def initialize(self, custom_headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        self.request_counter += 1
        return await self.post(
            {
                "jsonrpc": "2.0",
                "method": "initialize",
                "id": f"init-{self.request_counter}",
                "params": {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": "GatewayTestClient", "version": "1.0"},
                },
            },
            custom_headers,
        )

    async def tools_list(self, custom_headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        self.request_counter += 1
        return await self.post(
            {"jsonrpc": "2.0", "method": "tools/list", "id": f"toolslist-{self.request_counter}", "params": {}},
            custom_headers,
        )

    async def terminate(self) -> httpx.Response:
        return await self.http_client.delete("/api/mcp", headers=self._headers())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        admin_api_key=TEST_ADMIN_API_KEY,
        oauth_client_id="client-123",
        oauth_client_secret="client-secret",
        base_url=BASE_URL,
        frontend_url="http://frontend.test",
        allowed_origins=["http://frontend.test"],
    )


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def rate_limiter(clock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=3, window_seconds=1.0, clock=clock)


@pytest.fixture
def downstream() -> FakeDownstreamMCP:
    return FakeDownstreamMCP()


@pytest.fixture
def services(test_settings, kv_store, rate_limiter, downstream) -> GatewayServices:
    return GatewayServices(test_settings, kv_store, rate_limiter=rate_limiter, downstream_handler=downstream)


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture
async def http_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest.fixture
async def session_id(services) -> str:
    """A live OAuth identity session for user 'user-123'."""
    new_session_id, _ = await services.session_store.create_session(
        user_id="user-123",
        username="alice",
        email="alice@example.com",
        access_token="gho_test_token",
    )
    return new_session_id


@pytest.fixture
def mcp_client(http_client, session_id) -> GatewayMCPClient:
    return GatewayMCPClient(http_client, token=session_id)
