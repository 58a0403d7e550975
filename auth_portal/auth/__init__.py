"""
Authentication Package

This package handles browser sign-in against an OpenID Connect provider
and the session gate in front of protected routes.

Key responsibilities:
- OIDC login flow initiation and callback handling
- ID token validation using the provider JWKS
- Session gate (AuthRequired) for protected routes
- Logout through the provider

Modules:
- routes: Public authentication endpoints (/, /login, /callback, /logout) and /user
- provider: Provider discovery, code exchange and ID token verification
- dependencies: Session resolution and the AuthRequired gate
- pages: HTML pages

The authentication flow:
1. Browser hits /login, its session id becomes the state parameter
2. User authenticates with the provider
3. Provider redirects to /callback with code and state
4. Portal checks state, exchanges the code, verifies the ID token
5. Claims are stored in the session as the user's profile
"""

from .routes import auth_router, protected_router

__all__ = [
    "auth_router",
    "protected_router",
]
