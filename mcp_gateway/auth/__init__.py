# mcp_gateway/auth/__init__.py
"""
Authentication for the gateway: the session gateway that resolves
credentials, the error taxonomy and the GitHub OAuth client.

The `/auth/*` routes live in `mcp_gateway.auth.endpoints`.
"""

from .errors import (
    GatewayError,
    AuthenticationError,
    AuthenticationMissingError,
    AuthenticationInvalidError,
    AuthenticationExpiredError,
    RateLimitExceededError,
    DownstreamSessionNotFoundError,
    DownstreamUnavailableError,
    MalformedRequestBodyError,
    gateway_error_handler,
)
from .gateway import AuthenticatedIdentity, SessionGateway
from .oauth import GitHubOAuthClient, GitHubUserInfo, OAuthExchangeError

__all__ = [
    "GatewayError",
    "AuthenticationError",
    "AuthenticationMissingError",
    "AuthenticationInvalidError",
    "AuthenticationExpiredError",
    "RateLimitExceededError",
    "DownstreamSessionNotFoundError",
    "DownstreamUnavailableError",
    "MalformedRequestBodyError",
    "gateway_error_handler",
    "AuthenticatedIdentity",
    "SessionGateway",
    "GitHubOAuthClient",
    "GitHubUserInfo",
    "OAuthExchangeError",
]
