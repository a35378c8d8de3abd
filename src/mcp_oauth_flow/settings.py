from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LATEST_PROTOCOL_VERSION = "2025-06-18"


class OAuthFlowSettings(BaseSettings):
    """Settings for the OAuth flow.

    All settings can be configured via environment variables with the prefix
    MCP_OAUTH_. For example, MCP_OAUTH_REDIRECT_URL sets the redirect URL.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_OAUTH_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Client registration
    client_name: str = "MCP OAuth Flow"
    client_uri: AnyHttpUrl | None = None
    redirect_url: str = "http://localhost:6274/oauth/callback/debug"
    # Resource indicator to use instead of the one from protected resource metadata
    resource: AnyHttpUrl | None = None

    # Persistence
    storage_dir: Path = Field(
        default_factory=lambda: Path.home() / ".mcp-oauth-flow",
        description="Directory holding persisted credentials and flow state",
    )

    # HTTP
    http_timeout: float = 30.0
    protocol_version: str = LATEST_PROTOCOL_VERSION

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
