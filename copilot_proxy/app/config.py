"""
Configuration module for the Copilot reverse proxy.

This module uses Pydantic Settings to load and validate environment variables
for the listening socket, the upstream copilot endpoint, static assets, CORS
and logging.

Environment variables are loaded from .env file or system environment. The
resulting Settings object is frozen: it is built once at startup and passed
explicitly into the application factory and the forwarder.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_URL = "https://127.0.0.1:8443/copilot?chunked=true"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The upstream defaults point at the local copilot sidecar; certificate
    validation for it is disabled through UPSTREAM_INSECURE_SKIP_VERIFY.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    # =========================================================================
    # Upstream Copilot Service
    # =========================================================================

    UPSTREAM_URL: str = Field(
        default=DEFAULT_UPSTREAM_URL,
        description="Full URL (including query) that chat requests are POSTed to",
        min_length=1,
    )

    UPSTREAM_INSECURE_SKIP_VERIFY: bool = Field(
        default=True,
        description="Skip TLS certificate validation for the upstream (trusted local sidecar)",
    )

    UPSTREAM_CONNECT_TIMEOUT: Optional[float] = Field(
        default=10.0,
        description="Seconds allowed to establish the upstream connection (None disables)",
        gt=0,
    )

    UPSTREAM_READ_TIMEOUT: Optional[float] = Field(
        default=None,
        description="Seconds allowed between upstream reads (None waits indefinitely)",
        gt=0,
    )

    # =========================================================================
    # Static Assets, CORS, Logging
    # =========================================================================

    STATIC_DIR: str = Field(
        default="public",
        description="Directory served for GET requests that match no API route",
    )

    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins ('*' allows any origin)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs; ["*"] when every origin is allowed.
        """
        origins = [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        return origins or ["*"]

    @property
    def upstream_verify(self) -> bool:
        """Value handed to httpx as ``verify=`` for the upstream client."""
        return not self.UPSTREAM_INSECURE_SKIP_VERIFY

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("UPSTREAM_URL")
    @classmethod
    def validate_upstream_url(cls, v: str) -> str:
        """
        Validate that UPSTREAM_URL is an absolute http(s) URL.

        Raises:
            ValueError: If the scheme or host is missing
        """
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(
                f"Invalid UPSTREAM_URL: '{v}'. "
                "Expected format: 'https://host:port/path'"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v

    @field_validator("UPSTREAM_CONNECT_TIMEOUT", "UPSTREAM_READ_TIMEOUT", mode="before")
    @classmethod
    def empty_timeout_is_none(cls, v):
        # An empty env var (UPSTREAM_READ_TIMEOUT=) switches the timeout off
        if isinstance(v, str) and not v.strip():
            return None
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so that the environment is read only once per process.

    Raises:
        ValidationError: If an environment variable is invalid.
    """
    return Settings()
