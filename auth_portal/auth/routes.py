"""
Authentication routes for the OIDC login flow.

This module implements the OAuth 2.0 / OIDC authorization code flow and
the session states it moves a browser through:

    Anonymous -> PendingCallback -> Authenticated -> LoggedOut

- GET /          landing page, or straight to /user when authenticated
- GET /login     redirect to the provider's authorization endpoint
- GET /callback  validate state, exchange code, verify ID token
- GET /logout    destroy the session, redirect to the provider logout
- GET /user      profile page, behind the session gate
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from ..errors import StateMismatchError, TokenExchangeError, TokenVerificationError
from ..sessions import Session, SessionManager
from .dependencies import (
    ACCESS_TOKEN_KEY,
    ID_TOKEN_KEY,
    PROFILE_KEY,
    get_provider_holder,
    get_session,
    get_session_manager,
    is_authenticated,
    require_authenticated_session,
)
from .pages import render_home_page, render_user_page
from .provider import ProviderClientHolder

logger = logging.getLogger(__name__)

PROTECTED_HOME = "/user"
LOGIN_PATH = "/login"


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])

# Every route registered here sits behind the session gate
protected_router = APIRouter(
    tags=["protected"],
    dependencies=[Depends(require_authenticated_session)],
)


def validate_state(received_state: Optional[str], session: Session) -> None:
    """
    Check the callback state against the session that started the login.

    The session identifier doubles as the state value.

    Raises:
        StateMismatchError: If the state is missing or does not match
    """
    if not received_state or not secrets.compare_digest(
        received_state.encode("utf-8"), session.id.encode("utf-8")
    ):
        raise StateMismatchError("Invalid session state")


def _redirect_to_profile() -> RedirectResponse:
    return RedirectResponse(url=PROTECTED_HOME, status_code=status.HTTP_303_SEE_OTHER)


# =============================================================================
# Home
# =============================================================================

@auth_router.get("/", response_class=HTMLResponse)
async def home(
    session: Session = Depends(get_session),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Render the anonymous landing page, or send signed-in users to /user."""
    logger.info(f"Home session: {session.id}")

    if is_authenticated(session):
        return _redirect_to_profile()

    response = render_home_page()
    await sessions.save(session, response)
    return response


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login")
async def login(
    session: Session = Depends(get_session),
    sessions: SessionManager = Depends(get_session_manager),
    providers: ProviderClientHolder = Depends(get_provider_holder),
):
    """
    Initiate the OIDC login flow.

    The session is saved first so its identifier is stable, then used as
    the state parameter the provider hands back to /callback.
    """
    logger.info(f"Login session: {session.id}")

    if is_authenticated(session):
        return _redirect_to_profile()

    provider = await providers.get()
    state = session.id

    response = RedirectResponse(
        url=provider.build_authorization_url(state),
        status_code=status.HTTP_301_MOVED_PERMANENTLY,
    )
    await sessions.save(session, response)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    session: Session = Depends(get_session),
    sessions: SessionManager = Depends(get_session_manager),
    providers: ProviderClientHolder = Depends(get_provider_holder),
):
    """
    Handle the provider redirect.

    The session is only written once the code exchange and the ID token
    verification have both succeeded.

    Raises:
        TokenExchangeError: Provider error or rejected code (401)
        InvalidProviderResponseError: No ID token in the response (500)
        TokenVerificationError: ID token failed verification (500)
    """
    logger.info(f"Callback session: {session.id}")

    if is_authenticated(session):
        return _redirect_to_profile()

    try:
        validate_state(state, session)
    except StateMismatchError:
        logger.warning("Invalid session state", extra={"session_id": session.id})
        return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)

    if error:
        logger.warning(f"Provider returned an error: {error}", extra={"session_id": session.id})
        raise TokenExchangeError(
            f"Authentication failed: {error_description or error}",
            details={"error": error},
        )

    provider = await providers.get()

    try:
        tokens = await provider.exchange_code(code or "")
    except TokenExchangeError as e:
        logger.warning(f"No token found: {e}", extra={"session_id": session.id})
        raise

    try:
        profile = await provider.verify_identity_token(tokens.id_token)
    except TokenVerificationError as e:
        logger.error(f"Failed to verify ID token: {e}", extra={"session_id": session.id})
        raise

    session.set(ID_TOKEN_KEY, tokens.id_token)
    session.set(ACCESS_TOKEN_KEY, tokens.access_token)
    session.set(PROFILE_KEY, profile)

    response = _redirect_to_profile()
    await sessions.save(session, response)

    logger.info(
        "User authenticated",
        extra={"session_id": session.id, "subject": profile.get("sub")},
    )
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout")
async def logout(
    request: Request,
    session: Session = Depends(get_session),
    sessions: SessionManager = Depends(get_session_manager),
    providers: ProviderClientHolder = Depends(get_provider_holder),
):
    """Destroy the session and send the browser to the provider logout."""
    logger.info(f"Logout session: {session.id}")

    provider = await providers.get()
    return_to = f"{request.url.scheme}://{request.url.netloc}"

    response = RedirectResponse(
        url=provider.build_logout_url(return_to),
        status_code=status.HTTP_301_MOVED_PERMANENTLY,
    )
    await sessions.destroy(session, response)
    return response


# =============================================================================
# Protected Routes
# =============================================================================

@protected_router.get("/user", response_class=HTMLResponse)
async def user(
    session: Session = Depends(get_session),
    sessions: SessionManager = Depends(get_session_manager),
):
    """
    Render the profile stored in the session.

    Saving re-arms the inactivity window, so an active user stays signed in.
    """
    logger.info(f"User session: {session.id}")
    response = render_user_page(session.get(PROFILE_KEY))
    await sessions.save(session, response)
    return response
