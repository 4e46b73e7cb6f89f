"""
Configuration module for the PetCare BFF.

This module uses Pydantic Settings to load and validate environment variables
for upstream API communication, cookie sessions, request logging, and CORS.

Environment variables are loaded from .env file or system environment.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploymentMode(str, Enum):
    """Deployment mode the service runs under."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the upstream API, session cookies, logging and
    security policies is defined here.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    SERVER_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the BFF server",
    )

    SERVER_PORT: int = Field(
        default=5174,
        description="Port to bind the BFF server",
        ge=1,
        le=65535,
    )

    DEPLOYMENT_MODE: DeploymentMode = Field(
        default=DeploymentMode.DEVELOPMENT,
        description="development, production or test",
    )

    # =========================================================================
    # Upstream API Configuration
    # =========================================================================

    BACKEND_URL: HttpUrl = Field(
        default="http://localhost:8080",
        description="Upstream PetCare API base URL (e.g., http://api:8080)",
    )

    BACKEND_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Timeout for a single upstream call in seconds",
        gt=0,
    )

    API_PREFIX: str = Field(
        default="/api",
        description="Namespace of the upstream API that proxied paths are mapped into",
    )

    PROXY_PREFIXES: str = Field(
        default=(
            "/user,/pets,/appointments,/credits,/gifts,/donations,/routines,"
            "/routine-occurrences,/activities,/caregiver-invitations,/uploads,/public"
        ),
        description="Comma-separated path prefixes forwarded to the upstream API",
        min_length=1,
    )

    LARAVEL_API_KEY: str = Field(
        default="",
        description="Optional service-to-service key sent as x-api-key",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret used to sign the session cookie",
        min_length=16,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="pcsid",
        description="Name of the session cookie",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=7 * 24 * 60 * 60,
        description="Session cookie lifetime in seconds",
        ge=60,
    )

    COOKIE_SAMESITE: str = Field(
        default="lax",
        description="SameSite attribute for cookies (lax, strict or none)",
    )

    COOKIE_SECURE: bool = Field(
        default=False,
        description="Force the Secure cookie attribute (always on in production)",
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    LOG_FORMAT: str = Field(
        default="json",
        description="json for JSON lines, text for human-readable output",
    )

    LOG_SKIP_PREFIXES: str = Field(
        default="/horizon,/health",
        description="Comma-separated path prefixes the request logger ignores",
    )

    TRUST_PROXY_HOPS: int = Field(
        default=1,
        description="Number of reverse proxies trusted to set X-Forwarded-For",
        ge=0,
    )

    # =========================================================================
    # CORS Configuration
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def proxy_prefixes_list(self) -> List[str]:
        """
        Parse and return PROXY_PREFIXES as a list without trailing slashes.

        Returns:
            List of path prefixes, e.g. ["/user", "/pets"].
        """
        return [prefix.rstrip("/") for prefix in _split_csv(self.PROXY_PREFIXES)]

    @property
    def log_skip_prefixes_list(self) -> List[str]:
        return _split_csv(self.LOG_SKIP_PREFIXES)

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        return _split_csv(self.ALLOWED_ORIGINS)

    @property
    def backend_url_str(self) -> str:
        """Backend URL as string without trailing slash."""
        return str(self.BACKEND_URL).rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.DEPLOYMENT_MODE == DeploymentMode.PRODUCTION

    @property
    def secure_cookies(self) -> bool:
        return self.COOKIE_SECURE or self.is_production

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("PROXY_PREFIXES")
    @classmethod
    def validate_proxy_prefixes(cls, v: str) -> str:
        """
        Validate that every proxy prefix is an absolute path.

        Args:
            v: Raw comma-separated prefixes string

        Returns:
            Validated prefixes string

        Raises:
            ValueError: If no prefix is given or one is not absolute
        """
        prefixes = _split_csv(v)

        if not prefixes:
            raise ValueError("PROXY_PREFIXES must contain at least one prefix")

        for prefix in prefixes:
            if not prefix.startswith("/") or prefix == "/":
                raise ValueError(
                    f"Invalid proxy prefix: '{prefix}'. "
                    "Expected format: '/pets'"
                )

        return v

    @field_validator("API_PREFIX")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"API_PREFIX must start with '/', got: {v}")
        return v.rstrip("/")

    @field_validator("COOKIE_SAMESITE")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """
        Validate the SameSite attribute.

        Raises:
            ValueError: If value is not lax, strict or none
        """
        value = v.lower()
        allowed = ["lax", "strict", "none"]

        if value not in allowed:
            raise ValueError(f"COOKIE_SAMESITE must be one of {allowed}, got: {v}")

        return value

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        value = v.lower()
        if value not in ("json", "text"):
            raise ValueError(f"LOG_FORMAT must be 'json' or 'text', got: {v}")
        return value


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If SESSION_SECRET is missing or a variable is invalid.
    """
    return Settings()
