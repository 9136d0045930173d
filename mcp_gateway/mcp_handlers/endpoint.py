# mcp_gateway/mcp_handlers/endpoint.py
import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from starlette.endpoints import HTTPEndpoint
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse
from starlette.types import Message, Receive, Scope, Send

from ..auth.errors import (
    AuthenticationError,
    DownstreamSessionNotFoundError,
    DownstreamUnavailableError,
    RateLimitExceededError,
)
from ..rate_limiting import RateLimitDecision
from .router import MCP_SESSION_HEADER, MessageKind, RoutedMessage

if TYPE_CHECKING:
    from ..services import GatewayServices

logger = logging.getLogger(__name__)


class ResponseHandled(StarletteResponse):
    """
    Returned by endpoint methods whose response was already sent on the raw
    ASGI channel. Calling it does nothing.
    """

    def __init__(self):
        super().__init__(content=b"", media_type="text/plain")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        return


def _is_json(content_type: Optional[str]) -> bool:
    return bool(content_type) and "application/json" in content_type.lower()


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """A receive channel that yields the already-read body first, then defers to receive."""
    pending: Dict[str, Optional[Message]] = {
        "message": {"type": "http.request", "body": body, "more_body": False}
    }

    async def receive_replayed() -> Message:
        if pending["message"] is not None:
            message, pending["message"] = pending["message"], None
            return message
        return await receive()

    return receive_replayed


def _encode_headers(headers: Dict[str, str]) -> List[Tuple[bytes, bytes]]:
    return [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()]


class GatewayMCPEndpoint(HTTPEndpoint):
    """
    The authenticated, rate-limited `/api/mcp` entry point.

    Each request is authenticated, admitted by the per-identity limiter, has
    its `mcp-session-id` rewritten by the session-sticky router and is then
    handed to the downstream MCP handler with the identity in scope state.
    """

    async def _check_rate_limit(self, services: "GatewayServices", user_id: str) -> Optional[RateLimitDecision]:
        """The limiter decision, or None when the limiter could not answer (fail open)."""
        limiter = services.rate_limiter
        timeout = services.settings.rate_limit_check_timeout_seconds
        try:
            if not limiter.cancel_safe:
                return await limiter.admit(user_id)
            return await asyncio.wait_for(limiter.admit(user_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Rate limit check for '{user_id}' timed out after {timeout}s. Allowing request.")
        except Exception as e:
            logger.error(f"Rate limit check for '{user_id}' failed: {e}. Allowing request.", exc_info=True)
        return None

    async def _dispatch_mcp_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        services: "GatewayServices" = scope["app"].state.gateway
        request = StarletteRequest(scope, receive)

        try:
            identity = await services.session_gateway.authenticate(request)
        except AuthenticationError as e:
            logger.info(f"Rejected {scope['method']} /api/mcp: {e.kind}")
            await e.to_response()(scope, receive, send)
            return
        user_id = identity.user_id

        decision = await self._check_rate_limit(services, user_id)
        rate_limit_headers: Dict[str, str] = decision.headers() if decision else {}
        if decision is not None and not decision.allowed:
            await RateLimitExceededError(headers=rate_limit_headers).to_response()(scope, receive, send)
            return

        scope_for_mcp = scope.copy()
        scope_for_mcp["state"] = dict(scope.get("state") or {})
        scope_for_mcp["state"]["gateway_identity"] = identity.session.identity_props()
        receive_for_mcp = receive

        message: Optional[RoutedMessage] = None
        if scope["method"] == "POST" and _is_json(request.headers.get("content-type")):
            body = await request.body()
            receive_for_mcp = _replay_body(body, receive)
            message = services.router.classify(body)
            if message.kind != MessageKind.MALFORMED:
                downstream_session_id = await services.router.resolve_downstream_session_id(user_id, message)
                scope_for_mcp["headers"] = services.router.apply_session_header(
                    scope.get("headers", []), downstream_session_id
                )
                logger.debug(f"Routing {message.kind.value} '{message.method}' for '{user_id}' to session {downstream_session_id}")

        is_continuation = message is not None and message.kind == MessageKind.CONTINUATION
        extra_headers = _encode_headers(rate_limit_headers)
        response_started = False
        response_status: Optional[int] = None
        minted_session_id: Optional[str] = None
        session_not_found = False

        async def send_wrapper(outgoing: Message) -> None:
            nonlocal response_started, response_status, minted_session_id, session_not_found

            if outgoing["type"] == "http.response.start":
                response_status = outgoing["status"]
                headers = list(outgoing.get("headers", []))
                for k, v in headers:
                    if k.lower() == MCP_SESSION_HEADER:
                        minted_session_id = v.decode("latin-1")

                if response_status == 404 and is_continuation:
                    # Replaced by a structured body once the handler returns
                    session_not_found = True
                    return

                outgoing = dict(outgoing)
                outgoing["headers"] = headers + extra_headers
                response_started = True
            elif outgoing["type"] == "http.response.body" and session_not_found:
                return

            await send(outgoing)

        try:
            await services.downstream_handler(scope_for_mcp, receive_for_mcp, send_wrapper)
        except Exception as e:
            logger.error(f"Exception during MCP request processing for '{user_id}': {e}", exc_info=True)
            if not response_started:
                await DownstreamUnavailableError().to_response(rate_limit_headers)(scope, receive, send)
            return

        if session_not_found:
            logger.info(f"Downstream session not found for '{user_id}'. Client must re-initialize.")
            try:
                await services.router.invalidate(user_id)
            except Exception as e:
                logger.error(f"Failed to invalidate downstream session mapping for '{user_id}': {e}", exc_info=True)
            await DownstreamSessionNotFoundError().to_response(rate_limit_headers)(scope, receive, send)
            return

        try:
            if message is not None and message.kind == MessageKind.INITIALIZE:
                await services.router.record_response(user_id, message, response_status, minted_session_id)
            elif scope["method"] == "DELETE" and response_status is not None and 200 <= response_status < 300:
                await services.router.invalidate(user_id)
        except Exception as e:
            logger.error(f"Failed to update downstream session mapping for '{user_id}': {e}", exc_info=True)

    async def get(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()

    async def post(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()

    async def delete(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()
