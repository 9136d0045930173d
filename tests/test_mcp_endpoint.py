# tests/test_mcp_endpoint.py
import asyncio
import math
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from conftest import GatewayMCPClient
from mcp_gateway.rate_limiting import RateLimiterUnavailableError
from mcp_gateway.storage import KeyValueStoreUnavailableError


async def test_no_credentials_returns_401_missing(http_client, downstream):
    client = GatewayMCPClient(http_client)

    response = await client.initialize()

    assert response.status_code == 401, response.text
    assert response.json() == {"error": "AuthenticationMissing", "message": "Unauthorized"}
    assert response.headers["www-authenticate"] == "Bearer"
    assert downstream.calls == []


async def test_unknown_session_returns_401_invalid(http_client, downstream):
    client = GatewayMCPClient(http_client, token=str(uuid4()))

    response = await client.initialize()

    assert response.status_code == 401
    assert response.json()["error"] == "AuthenticationInvalid"
    assert downstream.calls == []


async def test_expired_session_returns_401_and_is_removed(http_client, services, downstream):
    session_id, session = await services.session_store.create_session(
        user_id="user-123", username="alice", access_token="gho_x"
    )
    expired = session.model_copy(update={"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)})
    await services.session_store.save_session(session_id, expired)

    response = await GatewayMCPClient(http_client, token=session_id).initialize()

    assert response.status_code == 401
    assert response.json() == {"error": "AuthenticationExpired", "message": "Session expired"}
    assert await services.session_store.load_session(session_id) is None
    assert downstream.calls == []


async def test_session_store_outage_fails_closed(http_client, kv_store, session_id, downstream, monkeypatch):
    async def unavailable(key):
        raise KeyValueStoreUnavailableError("connection refused")

    monkeypatch.setattr(kv_store, "get", unavailable)

    response = await GatewayMCPClient(http_client, token=session_id).initialize()

    assert response.status_code == 401
    assert response.json() == {"error": "AuthenticationInvalid", "message": "Unable to verify session"}
    assert downstream.calls == []


async def test_cookie_authenticates(http_client, session_id):
    response = await GatewayMCPClient(http_client, cookie=session_id).initialize()

    assert response.status_code == 200, response.text


async def test_rate_limit_sequence_and_recovery(mcp_client, clock, downstream):
    responses = [await mcp_client.initialize() for _ in range(5)]

    assert [r.status_code for r in responses] == [200, 200, 200, 429, 429]
    assert [r.headers["x-ratelimit-remaining"] for r in responses] == ["2", "1", "0", "0", "0"]
    assert all(r.headers["x-ratelimit-limit"] == "3" for r in responses)
    assert all(r.headers["x-ratelimit-reset"] == str(math.ceil(clock.now + 1.0)) for r in responses)
    assert responses[3].json() == {"error": "RateLimitExceeded", "message": "Rate limit exceeded"}
    assert len(downstream.calls) == 3

    clock.advance(1.01)
    recovered = await mcp_client.initialize()

    assert recovered.status_code == 200
    assert recovered.headers["x-ratelimit-remaining"] == "2"


async def test_rate_limits_are_per_identity(http_client, services, session_id):
    first = GatewayMCPClient(http_client, token=session_id)
    other_session_id, _ = await services.session_store.create_session(
        user_id="user-456", username="bob", access_token="gho_y"
    )
    second = GatewayMCPClient(http_client, token=other_session_id)

    for _ in range(4):
        await first.initialize()
    response = await second.initialize()

    assert response.status_code == 200
    assert response.headers["x-ratelimit-remaining"] == "2"


async def test_initialize_strips_client_session_and_records_mapping(mcp_client, services, downstream):
    response = await mcp_client.initialize(custom_headers={"Mcp-Session-Id": "stale-client-session"})

    assert response.status_code == 200
    minted = response.headers["mcp-session-id"]
    assert downstream.calls[-1]["session_id"] is None
    assert minted in downstream.sessions
    assert await services.session_map.get("user-123") == minted


async def test_continuation_is_routed_to_mapped_session(mcp_client, http_client, session_id, downstream):
    init_response = await mcp_client.initialize()
    minted = init_response.headers["mcp-session-id"]

    # A fresh client without the header still lands on the identity's session
    fresh_client = GatewayMCPClient(http_client, token=session_id)
    response = await fresh_client.tools_list(custom_headers={"Mcp-Session-Id": "client-guess"})

    assert response.status_code == 200, response.text
    assert downstream.calls[-1]["session_id"] == minted
    assert response.json()["result"] == {"tools": []}


async def test_unmapped_continuation_uses_fallback_and_surfaces_404(mcp_client, downstream):
    response = await mcp_client.tools_list()

    assert downstream.calls[-1]["session_id"] == "user-user-123"
    assert response.status_code == 404
    assert response.json()["error"] == "DownstreamSessionNotFound"
    assert response.headers["x-ratelimit-remaining"] == "2"


async def test_forgotten_downstream_session_invalidates_mapping(mcp_client, services, downstream, clock):
    await mcp_client.initialize()
    downstream.sessions.clear()

    response = await mcp_client.tools_list()

    assert response.status_code == 404
    assert response.json()["error"] == "DownstreamSessionNotFound"
    assert await services.session_map.get("user-123") is None

    # Re-initializing restores service
    clock.advance(1.01)
    reinit = await mcp_client.initialize()
    assert reinit.status_code == 200
    follow_up = await mcp_client.tools_list()
    assert follow_up.status_code == 200


async def test_reinitialize_overwrites_mapping(mcp_client, services):
    first = (await mcp_client.initialize()).headers["mcp-session-id"]
    second = (await mcp_client.initialize()).headers["mcp-session-id"]

    assert first != second
    assert await services.session_map.get("user-123") == second


async def test_identity_is_attached_for_downstream(mcp_client, downstream):
    await mcp_client.initialize()

    identity = downstream.calls[-1]["identity"]
    assert identity == {
        "user_id": "user-123",
        "username": "alice",
        "email": "alice@example.com",
        "access_token": "gho_test_token",
    }


async def test_malformed_body_is_forwarded_unchanged(http_client, session_id, downstream, services):
    response = await http_client.post(
        "/api/mcp",
        content=b"{not json",
        headers={
            "Authorization": f"Bearer {session_id}",
            "Content-Type": "application/json",
            "Mcp-Session-Id": "client-session",
        },
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32700
    assert downstream.calls[-1]["body"] == b"{not json"
    assert downstream.calls[-1]["session_id"] == "client-session"
    assert await services.session_map.get("user-123") is None


async def test_rate_limiter_failure_fails_open(mcp_client, services, monkeypatch):
    async def unavailable(identity_id, now=None):
        raise RateLimiterUnavailableError("counter store down")

    monkeypatch.setattr(services.rate_limiter, "admit", unavailable)

    response = await mcp_client.initialize()

    assert response.status_code == 200
    assert "x-ratelimit-remaining" not in response.headers


async def test_rate_limiter_timeout_fails_open(mcp_client, services, monkeypatch):
    async def hangs(identity_id, now=None):
        await asyncio.sleep(5)

    monkeypatch.setattr(services.rate_limiter, "admit", hangs)
    services.settings.rate_limit_check_timeout_seconds = 0.01

    response = await mcp_client.initialize()

    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


async def test_downstream_exception_returns_500(mcp_client, downstream):
    downstream.fail_with = RuntimeError("downstream exploded")

    response = await mcp_client.initialize()

    assert response.status_code == 500
    assert response.json() == {"error": "DownstreamUnavailable", "message": "Internal error"}


async def test_delete_terminates_and_invalidates_mapping(mcp_client, services, downstream):
    await mcp_client.initialize()

    response = await mcp_client.terminate()

    assert response.status_code == 200
    assert downstream.calls[-1]["method"] == "DELETE"
    assert await services.session_map.get("user-123") is None


async def test_get_stream_is_forwarded(mcp_client, http_client, downstream):
    await mcp_client.initialize()

    response = await http_client.get("/api/mcp", headers=mcp_client._headers())

    assert response.status_code == 200
    assert downstream.calls[-1]["method"] == "GET"
    assert "x-ratelimit-remaining" in response.headers
