"""
Shared fixtures for the Auth Portal tests.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from auth_portal.auth.provider import ProviderClient, ProviderClientHolder
from auth_portal.config import Settings
from auth_portal.main import create_app
from auth_portal.models import ProviderMetadata
from auth_portal.sessions import SessionManager

from .factories import (
    TEST_CALLBACK_URL,
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_DOMAIN,
    create_jwks,
    discovery_document,
    make_response,
)


@pytest.fixture
def settings():
    """Settings for a test provider, ignoring any local .env file"""
    return Settings(
        _env_file=None,
        AUTH0_DOMAIN=TEST_DOMAIN,
        AUTH0_CLIENT_ID=TEST_CLIENT_ID,
        AUTH0_CLIENT_SECRET=TEST_CLIENT_SECRET,
        AUTH0_CALLBACK_URL=TEST_CALLBACK_URL,
        JWKS_CACHE_SECONDS=3600,
    )


@pytest.fixture
def metadata():
    return ProviderMetadata.model_validate(discovery_document())


@pytest.fixture
def mock_httpx_client():
    """Mock httpx AsyncClient; GET answers with the test JWKS"""
    client = AsyncMock()
    client.get.return_value = make_response(200, create_jwks())
    return client


@pytest.fixture
def provider(settings, metadata, mock_httpx_client):
    return ProviderClient(settings, metadata, mock_httpx_client)


@pytest.fixture
def app(settings, provider):
    return create_app(
        settings=settings,
        session_manager=SessionManager.from_settings(settings),
        providers=ProviderClientHolder(settings, client=provider),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
