"""
OpenID Connect provider client.

This module handles:
- Discovering the provider endpoints from its issuer
- Building authorization and logout URLs
- Exchanging authorization codes for tokens
- Fetching and caching the provider JWKS (JSON Web Key Set)
- Verifying ID token signature and claims

One ``ProviderClient`` is shared by the whole process through a
``ProviderClientHolder``, which discovers it once and can drop it when
the provider configuration changes.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwk, jwt
from pydantic import ValidationError

from ..config import Settings
from ..errors import (
    ConfigurationError,
    InvalidProviderResponseError,
    TokenExchangeError,
    TokenVerificationError,
)
from ..models import Claims, ProviderMetadata, Tokens

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
LOGOUT_PATH = "/v2/logout"

# Clock skew tolerance for exp/iat/nbf
CLOCK_SKEW_SECONDS = 10


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def get_signing_key(kid: Optional[str], jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Find the key in the JWKS that matches the token's kid.

    A token without kid is only matched when the JWKS holds a single key.

    Returns:
        Matching key from JWKS, or None if not found
    """
    keys = jwks.get("keys", [])
    if kid is None:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key
    return None


# =============================================================================
# Provider Client
# =============================================================================

class ProviderClient:
    """
    OAuth2 / OIDC client for a single provider.

    Args:
        settings: Application settings holding the client registration
        metadata: Provider endpoints, usually obtained through discover()
        http_client: Shared async HTTP client used for every provider call

    Raises:
        ConfigurationError: If a required provider setting is missing
    """

    def __init__(self, settings: Settings, metadata: ProviderMetadata, http_client: httpx.AsyncClient):
        missing = settings.missing_provider_settings
        if missing:
            raise ConfigurationError(f"Missing provider settings: {', '.join(missing)}")

        self.settings = settings
        self.metadata = metadata
        self.client_id: str = settings.AUTH0_CLIENT_ID
        self.redirect_uri: str = settings.AUTH0_CALLBACK_URL
        self.scopes: List[str] = settings.scopes_list
        self._client_secret: str = settings.AUTH0_CLIENT_SECRET
        self._http = http_client
        self._timeout = settings.OIDC_HTTP_TIMEOUT_SECONDS

        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0
        self._jwks_lock = asyncio.Lock()

    @classmethod
    async def discover(cls, settings: Settings, http_client: httpx.AsyncClient) -> "ProviderClient":
        """
        Build a client from the provider's discovery document.

        Raises:
            ConfigurationError: If settings are missing or discovery fails
        """
        missing = settings.missing_provider_settings
        if missing:
            raise ConfigurationError(f"Missing provider settings: {', '.join(missing)}")

        discovery_url = f"{settings.issuer_base_url}{DISCOVERY_PATH}"
        try:
            response = await http_client.get(discovery_url, timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            raise ConfigurationError(f"Unable to fetch provider discovery document: {e}") from e

        if not response.is_success:
            raise ConfigurationError(
                f"Provider discovery failed with HTTP {response.status_code}",
                details={"url": discovery_url},
            )

        try:
            metadata = ProviderMetadata.model_validate(_json_or_none(response))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid provider discovery document: {e}") from e

        logger.info(
            "Discovered OIDC provider",
            extra={"issuer": metadata.issuer, "token_endpoint": metadata.token_endpoint},
        )
        return cls(settings, metadata, http_client)

    @property
    def allowed_algorithms(self) -> List[str]:
        """Asymmetric algorithms the provider advertises for ID tokens."""
        algorithms = [
            alg for alg in self.metadata.id_token_signing_alg_values_supported
            if alg and alg != "none" and not alg.startswith("HS")
        ]
        return algorithms or ["RS256"]

    # -------------------------------------------------------------------------
    # URLs
    # -------------------------------------------------------------------------

    def build_authorization_url(self, state: str) -> str:
        """
        Compose the authorization endpoint URL the browser is sent to.

        Query keys are sorted so the same state always yields the same URL.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        endpoint = self.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    def build_logout_url(self, return_to: str) -> str:
        """Provider logout URL that sends the browser back to return_to."""
        params = {
            "client_id": self.client_id,
            "returnTo": return_to,
        }
        return f"{self.settings.issuer_base_url}{LOGOUT_PATH}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Token Exchange
    # -------------------------------------------------------------------------

    async def exchange_code(self, code: str) -> Tokens:
        """
        Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: Network failure, provider rejection or malformed response
            InvalidProviderResponseError: Response carries no ID token
        """
        if not code or not code.strip():
            raise TokenExchangeError("Missing authorization code")

        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }

        try:
            response = await self._http.post(
                self.metadata.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Unable to reach token endpoint: {e}") from e

        token_data = _json_or_none(response)

        if not response.is_success:
            error_data = token_data if isinstance(token_data, dict) else {}
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            raise TokenExchangeError(
                f"Token exchange failed: {error_msg}",
                details={"provider_status": response.status_code},
            )

        if not isinstance(token_data, dict):
            raise TokenExchangeError("Token response is not a JSON object")

        if not token_data.get("access_token"):
            raise TokenExchangeError("Token response missing access_token")

        id_token = token_data.get("id_token")
        if not isinstance(id_token, str) or not id_token:
            raise InvalidProviderResponseError("No id_token field in token response")

        try:
            return Tokens.model_validate(token_data)
        except ValidationError as e:
            raise TokenExchangeError(f"Malformed token response: {e}") from e

    # -------------------------------------------------------------------------
    # ID Token Verification
    # -------------------------------------------------------------------------

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider JWKS, cached for JWKS_CACHE_SECONDS.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Raises:
            TokenVerificationError: If the JWKS cannot be fetched or is invalid
        """
        async with self._jwks_lock:
            now = time.monotonic()
            cache_ttl = self.settings.JWKS_CACHE_SECONDS
            if not force_refresh and self._jwks is not None and (now - self._jwks_fetched_at) < cache_ttl:
                return self._jwks

            try:
                response = await self._http.get(self.metadata.jwks_uri, timeout=self._timeout)
            except httpx.HTTPError as e:
                raise TokenVerificationError(f"Unable to fetch provider keys: {e}") from e

            if not response.is_success:
                raise TokenVerificationError(f"Provider keys request failed with HTTP {response.status_code}")

            jwks_data = _json_or_none(response)
            if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
                raise TokenVerificationError("Invalid JWKS response: missing 'keys' field")

            self._jwks = jwks_data
            self._jwks_fetched_at = now
            logger.debug(f"Fetched {len(jwks_data['keys'])} provider signing keys")
            return jwks_data

    async def verify_identity_token(self, raw_token: str) -> Claims:
        """
        Verify an ID token and return its claims.

        Checks the signature against the provider JWKS, the issuer, the
        audience (our client ID) and the expiry.

        Raises:
            TokenVerificationError: On any failed check
        """
        if not raw_token:
            raise TokenVerificationError("Empty ID token")

        try:
            header = jwt.get_unverified_header(raw_token)
        except JWTError as e:
            raise TokenVerificationError(f"Failed to decode token header: {e}") from e

        algorithm = header.get("alg")
        if algorithm not in self.allowed_algorithms:
            raise TokenVerificationError(f"Unsupported ID token algorithm: {algorithm}")

        kid = header.get("kid")
        jwks = await self.fetch_jwks()
        signing_key = get_signing_key(kid, jwks)
        if signing_key is None:
            # Keys may have rotated since the cache was filled
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(kid, jwks)
            if signing_key is None:
                raise TokenVerificationError(
                    "Unable to find matching signing key in JWKS. "
                    "Token may be from a different issuer or keys may have rotated."
                )

        try:
            public_key = jwk.construct(signing_key, algorithm=algorithm)
            pem_key = public_key.to_pem().decode("utf-8")
        except Exception as e:
            raise TokenVerificationError(f"Failed to construct public key from JWK: {e}") from e

        try:
            claims = jwt.decode(
                raw_token,
                pem_key,
                algorithms=[algorithm],
                audience=self.client_id,
                issuer=self.metadata.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_jti": False,
                    "verify_at_hash": False,
                    "require_exp": True,
                    "require_iss": True,
                    "require_aud": True,
                    "leeway": CLOCK_SKEW_SECONDS,
                },
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenVerificationError("ID token has expired") from e
        except jwt.JWTClaimsError as e:
            raise TokenVerificationError(f"Invalid ID token claims: {e}") from e
        except JWTError as e:
            raise TokenVerificationError(f"ID token verification failed: {e}") from e

        return claims


# =============================================================================
# Process-wide Holder
# =============================================================================

class ProviderClientHolder:
    """
    Process-scoped access to the provider client.

    The client is discovered once, on the first get() (normally during
    application startup); concurrent callers wait for the same discovery.
    invalidate() drops it so the next get() discovers again.

    Args:
        settings: Application settings
        http_client: HTTP client to use; one is created and owned when omitted
        client: Already built client (skips discovery)
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        client: Optional[ProviderClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client
        self._owns_http_client = False
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._client is not None

    async def get(self) -> ProviderClient:
        """
        Return the shared client, discovering it if needed.

        Raises:
            ConfigurationError: If settings are missing or discovery fails
        """
        client = self._client
        if client is not None:
            return client

        async with self._lock:
            if self._client is None:
                if self._http_client is None:
                    self._http_client = httpx.AsyncClient(timeout=self._settings.OIDC_HTTP_TIMEOUT_SECONDS)
                    self._owns_http_client = True
                self._client = await ProviderClient.discover(self._settings, self._http_client)
            return self._client

    async def invalidate(self) -> None:
        async with self._lock:
            self._client = None
        logger.info("Provider client invalidated, next request re-discovers it")

    async def aclose(self) -> None:
        """Close the HTTP client if this holder created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False
        self._client = None


__all__ = [
    "ProviderClient",
    "ProviderClientHolder",
    "get_signing_key",
]
