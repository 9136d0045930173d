# tests/test_session_gateway.py
from datetime import datetime, timedelta, timezone
from typing import Dict
from uuid import uuid4

import pytest
from starlette.requests import Request

from mcp_gateway.auth import (
    AuthenticationExpiredError,
    AuthenticationInvalidError,
    AuthenticationMissingError,
    SessionGateway,
)
from mcp_gateway.sessions import IdentitySessionStore, is_valid_session_id
from mcp_gateway.storage import KeyValueStoreUnavailableError


def make_request(headers: Dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/mcp",
        "query_string": b"",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()],
    }
    return Request(scope)


@pytest.fixture
def session_store(kv_store) -> IdentitySessionStore:
    return IdentitySessionStore(kv_store, session_lifetime_seconds=3600)


@pytest.fixture
def gateway(session_store) -> SessionGateway:
    return SessionGateway(session_store, cookie_name="hc_session")


async def _create(session_store, user_id: str = "user-123") -> str:
    session_id, _ = await session_store.create_session(user_id=user_id, username="alice", access_token="gho_x")
    return session_id


async def test_missing_credential(gateway):
    with pytest.raises(AuthenticationMissingError) as exc_info:
        await gateway.authenticate(make_request({}))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == {"error": "AuthenticationMissing", "message": "Unauthorized"}
    assert exc_info.value.headers["WWW-Authenticate"] == "Bearer"


async def test_non_bearer_authorization_is_missing(gateway, session_store):
    session_id = await _create(session_store)

    with pytest.raises(AuthenticationMissingError):
        await gateway.authenticate(make_request({"Authorization": f"Basic {session_id}"}))


async def test_unknown_session_is_invalid(gateway):
    with pytest.raises(AuthenticationInvalidError) as exc_info:
        await gateway.authenticate(make_request({"Authorization": f"Bearer {uuid4()}"}))

    assert exc_info.value.detail["message"] == "Invalid session"


async def test_malformed_session_id_is_invalid(gateway, kv_store, monkeypatch):
    async def must_not_be_called(key):
        raise AssertionError("store consulted for malformed id")

    monkeypatch.setattr(kv_store, "get", must_not_be_called)

    with pytest.raises(AuthenticationInvalidError):
        await gateway.authenticate(make_request({"Authorization": "Bearer not-a-uuid"}))


async def test_valid_bearer_attaches_identity(gateway, session_store):
    session_id = await _create(session_store)
    request = make_request({"Authorization": f"Bearer {session_id}"})

    identity = await gateway.authenticate(request)

    assert identity.user_id == "user-123"
    assert identity.session_id == session_id
    assert request.state.user_id == "user-123"
    assert request.state.session.username == "alice"


async def test_cookie_takes_precedence_over_bearer(gateway, session_store):
    cookie_session = await _create(session_store, user_id="cookie-user")
    bearer_session = await _create(session_store, user_id="bearer-user")
    request = make_request({
        "Cookie": f"hc_session={cookie_session}",
        "Authorization": f"Bearer {bearer_session}",
    })

    identity = await gateway.authenticate(request)

    assert identity.user_id == "cookie-user"


async def test_invalid_cookie_is_not_rescued_by_bearer(gateway, session_store):
    bearer_session = await _create(session_store)
    request = make_request({
        "Cookie": f"hc_session={uuid4()}",
        "Authorization": f"Bearer {bearer_session}",
    })

    with pytest.raises(AuthenticationInvalidError):
        await gateway.authenticate(request)


async def test_expired_session_is_deleted(gateway, session_store):
    session_id, session = await session_store.create_session(user_id="user-123", username="alice", access_token="x")
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    await session_store.save_session(session_id, session.model_copy(update={"expires_at": past}))

    with pytest.raises(AuthenticationExpiredError) as exc_info:
        await gateway.authenticate(make_request({"Authorization": f"Bearer {session_id}"}))

    assert exc_info.value.detail == {"error": "AuthenticationExpired", "message": "Session expired"}
    assert await session_store.load_session(session_id) is None


async def test_store_failure_fails_closed(gateway, session_store, kv_store, monkeypatch):
    session_id = await _create(session_store)

    async def unavailable(key):
        raise KeyValueStoreUnavailableError("connection refused")

    monkeypatch.setattr(kv_store, "get", unavailable)

    with pytest.raises(AuthenticationInvalidError) as exc_info:
        await gateway.authenticate(make_request({"Authorization": f"Bearer {session_id}"}))

    assert exc_info.value.detail["message"] == "Unable to verify session"


async def test_created_sessions_use_uuid4_ids_and_lifetime(session_store):
    session_id, session = await session_store.create_session(user_id="u", username="n", access_token="t")

    assert is_valid_session_id(session_id)
    assert (session.expires_at - session.created_at) == timedelta(seconds=3600)
    assert session.session_type == "oauth"
    assert not session.is_expired()


async def test_undecodable_record_is_treated_as_absent(session_store, kv_store):
    session_id = str(uuid4())
    await kv_store.put(f"session:{session_id}", "{broken")

    assert await session_store.load_session(session_id) is None
