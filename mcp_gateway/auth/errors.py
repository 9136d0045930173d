# mcp_gateway/auth/errors.py
from typing import Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class GatewayError(HTTPException):
    """
    Base class for failures the gateway reports to callers.

    Every subclass carries a stable `kind` so client integrations can branch
    on the classification instead of parsing the message.
    """

    kind: str = "GatewayError"

    def __init__(self, status_code: int, message: str, headers: Optional[Dict[str, str]] = None):
        self.message = message
        detail = {"error": self.kind, "message": message}
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def to_response(self, extra_headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        headers = dict(self.headers or {})
        if extra_headers:
            headers.update(extra_headers)
        return JSONResponse(status_code=self.status_code, content=self.detail, headers=headers)


class AuthenticationError(GatewayError):
    """Authentication failures are terminal for the request and never reach downstream."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthenticationMissingError(AuthenticationError):
    """Neither a session cookie nor a bearer token was presented."""

    kind = "AuthenticationMissing"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthenticationInvalidError(AuthenticationError):
    """A credential was presented but does not resolve to a session."""

    kind = "AuthenticationInvalid"

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message)


class AuthenticationExpiredError(AuthenticationError):
    """The credential resolved to a session whose expiry has passed."""

    kind = "AuthenticationExpired"

    def __init__(self, message: str = "Session expired"):
        super().__init__(message)


class RateLimitExceededError(GatewayError):
    kind = "RateLimitExceeded"

    def __init__(self, message: str = "Rate limit exceeded", headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, message=message, headers=headers)


class DownstreamSessionNotFoundError(GatewayError):
    """
    The downstream MCP handler does not know the session addressed by the
    request. The client is expected to send `initialize` again.
    """

    kind = "DownstreamSessionNotFound"

    def __init__(self, message: str = "MCP session not found. Send an initialize request to start a new session."):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message)


class DownstreamUnavailableError(GatewayError):
    kind = "DownstreamUnavailable"

    def __init__(self, message: str = "Internal error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, message=message)


class MalformedRequestBodyError(GatewayError):
    """
    Raised while classifying a message body that is not a JSON-RPC object.
    The gateway forwards such bodies unchanged so the downstream parser
    produces the protocol-level error.
    """

    kind = "MalformedRequestBody"

    def __init__(self, message: str = "Malformed JSON-RPC request body"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """FastAPI exception handler rendering GatewayError as its structured body."""
    return exc.to_response()
