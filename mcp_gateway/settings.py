# mcp_gateway/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# This settings.py file is at <project>/mcp_gateway/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "MCP Gateway"
    app_version: str = "v0.1.0"
    debug_mode: bool = False
    log_level: str = "INFO"

    # "memory" keeps everything in-process, "redis" shares sessions and counters
    storage_backend: str = "memory"

    # Redis configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    redis_socket_timeout_seconds: float = 2.0

    # Identity sessions
    session_cookie_name: str = "hc_session"
    session_lifetime_seconds: int = 24 * 60 * 60
    oauth_state_ttl_seconds: int = 600

    # Downstream MCP session mapping, independent of the identity session lifetime
    mcp_session_ttl_seconds: int = 7 * 24 * 60 * 60

    # Rate limiting
    rate_limit_max_requests: int = 3
    rate_limit_window_seconds: float = 1.0
    rate_limit_max_tracked_identities: int = 10_000
    rate_limit_sweep_interval_seconds: float = 60.0
    rate_limit_check_timeout_seconds: float = 2.0

    # GitHub OAuth
    oauth_client_id: str = ""
    oauth_client_secret: Optional[str] = None
    base_url: str = "http://127.0.0.1:8000"
    frontend_url: str = "http://127.0.0.1:3000"
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["https://medlock.ai", "https://chat.openai.com"]
    )

    audit_ttl_seconds: int = 30 * 24 * 60 * 60

    admin_api_key: Optional[str] = Field(
        default=None,
        description="API Key for accessing admin routes."
    )

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )


settings = Settings()

logger.debug(
    f"Settings loaded: storage_backend='{settings.storage_backend}', "
    f"debug_mode={settings.debug_mode}, "
    f"rate_limit={settings.rate_limit_max_requests}/{settings.rate_limit_window_seconds}s, "
    f"oauth_client_secret={'********' if settings.oauth_client_secret else 'None'}, "
    f"admin_api_key={'********' if settings.admin_api_key else 'None'}"
)
