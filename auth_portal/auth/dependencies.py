"""
FastAPI dependencies shared by the authentication routes.

The session manager and the provider holder are built by the application
factory and attached to ``app.state``; these dependencies hand them to the
route handlers.
"""

import logging

from fastapi import Depends, Request

from ..errors import AuthenticationRequired, ConfigurationError
from ..sessions import Session, SessionManager
from .provider import ProviderClientHolder

logger = logging.getLogger(__name__)

PROFILE_KEY = "profile"
ID_TOKEN_KEY = "id_token"
ACCESS_TOKEN_KEY = "access_token"


def is_authenticated(session: Session) -> bool:
    """A session is authenticated iff it holds a non-empty profile."""
    return bool(session.get(PROFILE_KEY))


def get_session_manager(request: Request) -> SessionManager:
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise ConfigurationError("Session manager is not configured")
    return manager


def get_provider_holder(request: Request) -> ProviderClientHolder:
    holder = getattr(request.app.state, "providers", None)
    if holder is None:
        raise ConfigurationError("Provider client is not configured")
    return holder


async def get_session(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> Session:
    """
    Resolve the request's session.

    FastAPI caches dependencies per request, so the gate and the handler
    behind it share one Session object.
    """
    return await sessions.get(request)


async def require_authenticated_session(
    request: Request,
    session: Session = Depends(get_session),
) -> Session:
    """
    Gate for protected routes.

    Raises:
        AuthenticationRequired: If the session holds no profile
    """
    logger.info(f"AuthRequired session: {session.id}")

    if not is_authenticated(session):
        logger.info(
            "Unauthenticated request to protected route",
            extra={"path": request.url.path, "session_id": session.id},
        )
        raise AuthenticationRequired(redirect_to="/")

    return session
