"""
Auth Portal
===========

Browser sign-in against an OpenID Connect provider, with the user's
authenticated state kept in a server-side session.

Packages:
    - auth:     login/callback/logout routes, provider client, session gate
    - sessions: session storage and cookie handling

Modules:
    - config: Pydantic Settings loaded from the environment
    - errors: Error taxonomy answered by the uniform error responder
    - models: Provider and session models
    - main:   Application factory
"""

__version__ = "1.0.0"
