"""
FastAPI Auth Portal Application Factory
=======================================

Entry point for the portal that signs browsers in against an OpenID
Connect provider and keeps their authenticated state in a server-side
session.

Routes:
    - /          : Landing page
    - /login     : Redirect to the provider's authorization endpoint
    - /callback  : Provider redirect target (code + state)
    - /logout    : Destroy the session, redirect to the provider logout
    - /user      : Profile page (requires an authenticated session)
    - /health    : Health check endpoint

Environment Variables Required:
    - AUTH0_DOMAIN: Provider issuer domain (e.g., "tenant.eu.auth0.com")
    - AUTH0_CLIENT_ID: OAuth2 client ID
    - AUTH0_CLIENT_SECRET: OAuth2 client secret
    - AUTH0_CALLBACK_URL: Redirect URL (e.g., "http://localhost:3000/callback")
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn auth_portal.main:app --reload --host 0.0.0.0 --port 3000

    Production:
        uvicorn auth_portal.main:app --host 0.0.0.0 --port 3000 --proxy-headers
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, RedirectResponse

from .auth import auth_router, protected_router
from .auth.provider import ProviderClientHolder
from .config import Settings, get_settings, validate_configuration
from .errors import AuthenticationRequired, AuthPortalError, ConfigurationError
from .models import HealthResponse
from .sessions import SessionManager

SERVICE_NAME = "auth-portal"
SERVICE_VERSION = "1.0.0"

logger = logging.getLogger("auth_portal.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Report configuration problems, refusing to start on errors
        - Discover the provider, so missing configuration fails the start

    Shutdown tasks:
        - Close the provider HTTP client
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    status_report = validate_configuration(settings)
    for warning in status_report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    if not status_report["valid"]:
        for error in status_report["errors"]:
            logger.error(f"Configuration error: {error}")
        raise ConfigurationError("; ".join(status_report["errors"]))

    logger.info(
        "Starting auth portal",
        extra={
            "issuer": settings.issuer_base_url,
            "cookie_name": settings.SESSION_COOKIE_NAME,
            "log_level": settings.LOG_LEVEL,
        },
    )

    providers: ProviderClientHolder = app.state.providers
    await providers.get()
    logger.info("Provider client ready")

    yield

    logger.info("Shutting down auth portal")
    await providers.aclose()


def register_exception_handlers(app: FastAPI) -> None:
    """
    Uniform error responder.

    Portal errors answer with their own status code and a plain-text body;
    anything else is a 500.
    """

    @app.exception_handler(AuthenticationRequired)
    async def authentication_required_handler(request: Request, exc: AuthenticationRequired):
        return RedirectResponse(url=exc.redirect_to, status_code=exc.status_code)

    @app.exception_handler(AuthPortalError)
    async def portal_error_handler(request: Request, exc: AuthPortalError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__}: {exc.message}",
            extra={
                "path": request.url.path,
                "status_code": exc.status_code,
                **{f"detail_{key}": value for key, value in exc.details.items()},
            },
        )
        return PlainTextResponse(content=exc.message, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return PlainTextResponse(content=str(exc) or "Internal Server Error", status_code=500)


def create_app(
    settings: Optional[Settings] = None,
    session_manager: Optional[SessionManager] = None,
    providers: Optional[ProviderClientHolder] = None,
) -> FastAPI:
    """
    Application factory function.

    The session manager and the provider holder are built here (unless
    given) and attached to app.state, where the route dependencies find
    them.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Auth Portal",
        description="OpenID Connect sign-in with server-side sessions",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_manager = session_manager or SessionManager.from_settings(settings)
    app.state.providers = providers or ProviderClientHolder(settings)

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
        )
        return response

    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(protected_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Liveness probe."""
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            provider_ready=app.state.providers.ready,
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "auth_portal.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
