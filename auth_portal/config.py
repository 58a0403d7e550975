"""
Configuration module for the Auth Portal.

This module uses Pydantic Settings to load and validate environment variables
for the OpenID Connect provider, the server-side session cookie, and the
HTTP server itself.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The OIDC provider settings are optional here so the application can be
    imported without them; the provider client refuses to start when any of
    them is missing.
    """

    # =========================================================================
    # OIDC Provider Configuration
    # =========================================================================

    AUTH0_DOMAIN: Optional[str] = Field(
        None,
        description="Issuer domain (e.g., 'tenant.eu.auth0.com') or full issuer URL",
    )

    AUTH0_CLIENT_ID: Optional[str] = Field(
        None,
        description="OAuth2 client ID registered at the provider",
    )

    AUTH0_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="OAuth2 client secret",
    )

    AUTH0_CALLBACK_URL: Optional[str] = Field(
        None,
        description="Redirect URL registered at the provider (e.g., http://localhost:3000/callback)",
    )

    OIDC_SCOPES: str = Field(
        default="openid,profile",
        description="Comma-separated list of scopes requested at login",
    )

    OIDC_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for discovery, token and JWKS calls",
        gt=0,
        le=120,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider JWKS in seconds",
        ge=0,
        le=86400,
    )

    # =========================================================================
    # Session Cookie Configuration
    # =========================================================================

    SESSION_COOKIE_NAME: str = Field(
        default="session_id",
        description="Name of the cookie carrying the session identifier",
        min_length=1,
    )

    SESSION_COOKIE_DOMAIN: Optional[str] = Field(
        None,
        description="Domain attribute of the session cookie",
    )

    SESSION_COOKIE_PATH: str = Field(
        default="/",
        description="Path attribute of the session cookie",
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Only send the session cookie over HTTPS",
    )

    SESSION_COOKIE_HTTPONLY: bool = Field(
        default=True,
        description="Hide the session cookie from JavaScript",
    )

    SESSION_COOKIE_SAMESITE: Literal["lax", "strict", "none"] = Field(
        default="lax",
        description="SameSite policy of the session cookie",
    )

    SESSION_EXPIRATION_SECONDS: int = Field(
        default=3600,
        description="Session inactivity window in seconds",
        ge=60,
        le=7 * 86400,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=3000, description="Port to bind the server", ge=1, le=65535)

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

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
    def scopes_list(self) -> List[str]:
        """Requested scopes as a clean list."""
        return [scope.strip() for scope in self.OIDC_SCOPES.split(",") if scope.strip()]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def issuer_base_url(self) -> Optional[str]:
        """
        Base URL of the provider, without trailing slash.

        AUTH0_DOMAIN may be a bare domain or a full URL; bare domains are
        served over HTTPS.
        """
        if not self.AUTH0_DOMAIN:
            return None
        domain = self.AUTH0_DOMAIN.strip().rstrip("/")
        if domain.startswith("http://") or domain.startswith("https://"):
            return domain
        return f"https://{domain}"

    @property
    def missing_provider_settings(self) -> List[str]:
        """Names of the required provider settings that are unset or blank."""
        required = {
            "AUTH0_DOMAIN": self.AUTH0_DOMAIN,
            "AUTH0_CLIENT_ID": self.AUTH0_CLIENT_ID,
            "AUTH0_CLIENT_SECRET": self.AUTH0_CLIENT_SECRET,
            "AUTH0_CALLBACK_URL": self.AUTH0_CALLBACK_URL,
        }
        return [name for name, value in required.items() if not value or not value.strip()]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        """
        Require the 'openid' scope, without it the provider issues no ID token.

        Raises:
            ValueError: If 'openid' is not among the scopes
        """
        scopes = [s.strip() for s in v.split(",") if s.strip()]
        if "openid" not in scopes:
            raise ValueError("OIDC_SCOPES must include 'openid'")
        return v

    @field_validator("SESSION_COOKIE_SAMESITE", mode="before")
    @classmethod
    def normalize_samesite(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


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
        ValidationError: If an environment variable holds an invalid value.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration()
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    for name in settings.missing_provider_settings:
        errors.append(f"{name} is not set")

    if settings.SESSION_COOKIE_SAMESITE == "none" and not settings.SESSION_COOKIE_SECURE:
        errors.append("SESSION_COOKIE_SAMESITE=none requires SESSION_COOKIE_SECURE=true")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is disabled (enable it behind HTTPS)")

    if settings.AUTH0_CALLBACK_URL and settings.AUTH0_CALLBACK_URL.startswith("http://"):
        warnings.append("AUTH0_CALLBACK_URL is not HTTPS")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "session_expiration_seconds": settings.SESSION_EXPIRATION_SECONDS,
    }
