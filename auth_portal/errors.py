"""
Error taxonomy for the Auth Portal.

Every error carries the HTTP status code the uniform error responder in
``auth_portal.main`` answers with. Handlers raise these and never build
error responses themselves.
"""

from typing import Any, Dict, Optional

from fastapi import status


class AuthPortalError(Exception):
    """Base exception for Auth Portal errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class SessionStoreError(AuthPortalError):
    """Session backend unavailable, or stored data corrupt or not serialisable."""


class ConfigurationError(AuthPortalError):
    """Missing or invalid provider settings, or provider discovery failed."""


class TokenExchangeError(AuthPortalError):
    """The provider rejected, or could not process, the authorization code."""

    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidProviderResponseError(AuthPortalError):
    """The token response is well-formed but lacks the ID token."""


class TokenVerificationError(AuthPortalError):
    """ID token signature, issuer, audience or expiry check failed."""


class StateMismatchError(AuthPortalError):
    """The callback state does not match the session that started the login."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationRequired(AuthPortalError):
    """Raised by the session gate; answered with a redirect to the landing page."""

    status_code = status.HTTP_303_SEE_OTHER

    def __init__(self, message: str = "Authentication required", redirect_to: str = "/"):
        super().__init__(message)
        self.redirect_to = redirect_to


__all__ = [
    "AuthPortalError",
    "SessionStoreError",
    "ConfigurationError",
    "TokenExchangeError",
    "InvalidProviderResponseError",
    "TokenVerificationError",
    "StateMismatchError",
    "AuthenticationRequired",
]
