"""
Data Models Module

Pydantic models exchanged with the OpenID Connect provider, and the
session cookie attributes derived from the settings.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import Settings


# ============================================================================
# Provider Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Subset of the OIDC discovery document used by the provider client."""

    model_config = ConfigDict(extra="ignore")

    issuer: str = Field(..., description="Issuer identifier, compared to the 'iss' claim")
    authorization_endpoint: str = Field(..., description="Where the browser is sent to log in")
    token_endpoint: str = Field(..., description="Authorization code exchange endpoint")
    jwks_uri: str = Field(..., description="Provider signing keys")
    userinfo_endpoint: Optional[str] = Field(None, description="UserInfo endpoint")
    end_session_endpoint: Optional[str] = Field(None, description="RP-initiated logout endpoint")
    id_token_signing_alg_values_supported: List[str] = Field(
        default_factory=lambda: ["RS256"],
        description="Algorithms the provider signs ID tokens with",
    )


class Tokens(BaseModel):
    """Token bundle returned by the authorization code exchange."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1, description="Opaque bearer token")
    id_token: str = Field(..., min_length=1, description="Signed identity token (raw JWT)")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: Optional[int] = Field(None, description="Access token lifetime in seconds")
    scope: Optional[str] = Field(None, description="Granted scopes")


# ============================================================================
# Session Models
# ============================================================================

class SessionCookieConfig(BaseModel):
    """Attributes of the cookie carrying the session identifier."""

    name: str = "session_id"
    domain: Optional[str] = None
    path: str = "/"
    secure: bool = False
    http_only: bool = True
    same_site: Literal["lax", "strict", "none"] = "lax"
    expiration_seconds: int = 3600

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCookieConfig":
        return cls(
            name=settings.SESSION_COOKIE_NAME,
            domain=settings.SESSION_COOKIE_DOMAIN or None,
            path=settings.SESSION_COOKIE_PATH,
            secure=settings.SESSION_COOKIE_SECURE,
            http_only=settings.SESSION_COOKIE_HTTPONLY,
            same_site=settings.SESSION_COOKIE_SAMESITE,
            expiration_seconds=settings.SESSION_EXPIRATION_SECONDS,
        )


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    provider_ready: bool = Field(..., description="Provider metadata has been discovered")


Claims = Dict[str, Any]
