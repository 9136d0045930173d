# mcp_gateway/auth/oauth.py
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
USER_AGENT = "Medlock/1.0"


class OAuthExchangeError(Exception):
    """The provider rejected the code exchange or the user-info lookup."""


class GitHubUserInfo(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    id: str
    login: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.login:
            return self.login
        if self.email:
            return self.email.split("@")[0]
        return "user"


class GitHubOAuthClient:
    """Authorization-code flow against GitHub."""

    def __init__(self, client_id: str, client_secret: Optional[str], redirect_uri: str, scope: str = "user:email"):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": state,
        }
        return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, http_client: httpx.AsyncClient, code: str) -> str:
        """Trade an authorization code for an access token."""
        try:
            response = await http_client.post(
                GITHUB_TOKEN_URL,
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                },
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
            response.raise_for_status()
            token_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"GitHub token exchange failed: {e.response.status_code} - {e.response.text!r}")
            raise OAuthExchangeError(f"GitHub token exchange failed: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"GitHub token exchange failed: {e}", exc_info=True)
            raise OAuthExchangeError(f"GitHub token exchange failed: {e}") from e

        access_token = token_data.get("access_token")
        if not access_token:
            reason = token_data.get("error_description") or token_data.get("error") or "no access_token in response"
            logger.error(f"GitHub token exchange returned no token: {reason}")
            raise OAuthExchangeError(f"GitHub token exchange failed: {reason}")
        return access_token

    async def fetch_user_info(self, http_client: httpx.AsyncClient, access_token: str) -> GitHubUserInfo:
        try:
            response = await http_client.get(
                GITHUB_USER_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": USER_AGENT,
                },
            )
            response.raise_for_status()
            return GitHubUserInfo.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(f"GitHub user info fetch failed: {e.response.status_code} - {e.response.text!r}")
            raise OAuthExchangeError(f"GitHub user info fetch failed: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error(f"GitHub user info fetch failed: {e}", exc_info=True)
            raise OAuthExchangeError(f"GitHub user info fetch failed: {e}") from e
