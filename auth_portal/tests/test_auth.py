"""
Authentication Flow Tests

Drives the portal through the browser-facing routes with a TestClient:
landing page, login redirect, callback validation, the session gate on
/user, and logout.
"""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from auth_portal.auth.provider import ProviderClientHolder
from auth_portal.main import create_app
from auth_portal.models import SessionCookieConfig
from auth_portal.sessions import MemoryStorage, SessionManager

from .factories import (
    TEST_CALLBACK_URL,
    TEST_CLIENT_ID,
    TEST_DOMAIN,
    FakeClock,
    create_id_token,
    load_session,
    make_response,
    store_session,
    token_response,
)

COOKIE = "session_id"


def start_login(client) -> str:
    """GET /login and return the session id the state was bound to."""
    response = client.get("/login", follow_redirects=False)
    assert response.status_code == 301
    return client.cookies.get(COOKIE)


def complete_login(client, mock_httpx_client, code: str = "abc") -> str:
    session_id = start_login(client)
    mock_httpx_client.post.return_value = token_response(id_token=create_id_token())
    response = client.get(f"/callback?code={code}&state={session_id}", follow_redirects=False)
    assert response.status_code == 303
    return session_id


# ============================================================================
# Home
# ============================================================================

class TestHome:

    def test_fresh_visitor_gets_landing_page(self, client):
        response = client.get("/", follow_redirects=False)

        assert response.status_code == 200
        assert "SignIn" in response.text
        assert client.cookies.get(COOKIE)

    def test_authenticated_visitor_redirected_to_profile(self, client, mock_httpx_client):
        complete_login(client, mock_httpx_client)

        response = client.get("/", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/user"


# ============================================================================
# Login
# ============================================================================

class TestLogin:

    def test_login_redirects_to_provider_with_session_state(self, app, client):
        response = client.get("/login", follow_redirects=False)

        assert response.status_code == 301
        session_id = client.cookies.get(COOKIE)
        assert session_id

        location = urlparse(response.headers["location"])
        params = parse_qs(location.query)
        assert location.scheme == "https"
        assert location.netloc == TEST_DOMAIN
        assert location.path == "/authorize"
        assert params["state"] == [session_id]
        assert params["redirect_uri"] == [TEST_CALLBACK_URL]
        assert params["client_id"] == [TEST_CLIENT_ID]
        assert params["response_type"] == ["code"]

        # the session exists server-side so the callback can find it
        assert load_session(app, session_id) == {}

    def test_login_keeps_existing_session_id(self, client):
        client.get("/")
        session_id = client.cookies.get(COOKIE)

        assert start_login(client) == session_id

    def test_login_when_authenticated_short_circuits(self, client, mock_httpx_client):
        complete_login(client, mock_httpx_client)

        response = client.get("/login", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/user"


# ============================================================================
# Callback
# ============================================================================

class TestCallback:

    def test_successful_callback_populates_session(self, app, client, mock_httpx_client):
        session_id = start_login(client)
        mock_httpx_client.post.return_value = token_response(id_token=create_id_token())

        response = client.get(f"/callback?code=abc&state={session_id}", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/user"

        stored = load_session(app, session_id)
        assert stored["access_token"] == "mock-access-token"
        assert stored["id_token"]
        assert stored["profile"]["sub"] == "auth0|user-123"
        assert stored["profile"]["name"] == "Test User"

        assert mock_httpx_client.post.call_args.kwargs["data"]["code"] == "abc"

    def test_state_mismatch_redirects_to_login(self, app, client, mock_httpx_client):
        session_id = start_login(client)

        response = client.get("/callback?code=abc&state=WRONG", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        assert load_session(app, session_id) == {}
        mock_httpx_client.post.assert_not_called()

    def test_missing_state_redirects_to_login(self, client, mock_httpx_client):
        start_login(client)

        response = client.get("/callback?code=abc", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        mock_httpx_client.post.assert_not_called()

    def test_callback_without_session_redirects_to_login(self, client, mock_httpx_client):
        response = client.get("/callback?code=abc&state=some-session", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        mock_httpx_client.post.assert_not_called()

    def test_rejected_code_returns_401(self, app, client, mock_httpx_client):
        session_id = start_login(client)
        mock_httpx_client.post.return_value = make_response(
            403, {"error": "invalid_grant", "error_description": "Invalid authorization code"}
        )

        response = client.get(f"/callback?code=bad&state={session_id}", follow_redirects=False)

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("text/plain")
        assert "Invalid authorization code" in response.text
        stored = load_session(app, session_id)
        assert "profile" not in stored
        assert "id_token" not in stored
        assert "access_token" not in stored

    def test_missing_code_returns_401(self, app, client, mock_httpx_client):
        session_id = start_login(client)

        response = client.get(f"/callback?state={session_id}", follow_redirects=False)

        assert response.status_code == 401
        assert load_session(app, session_id) == {}
        mock_httpx_client.post.assert_not_called()

    def test_provider_error_returns_401(self, app, client, mock_httpx_client):
        session_id = start_login(client)

        response = client.get(
            f"/callback?error=access_denied&error_description=User+cancelled&state={session_id}",
            follow_redirects=False,
        )

        assert response.status_code == 401
        assert "User cancelled" in response.text
        assert load_session(app, session_id) == {}

    def test_missing_id_token_returns_500(self, app, client, mock_httpx_client):
        session_id = start_login(client)
        mock_httpx_client.post.return_value = token_response(id_token=None)

        response = client.get(f"/callback?code=abc&state={session_id}", follow_redirects=False)

        assert response.status_code == 500
        assert "id_token" in response.text
        assert load_session(app, session_id) == {}

    @pytest.mark.parametrize(
        "token_kwargs",
        [
            {"audience": "another-client"},
            {"issuer": "https://evil.example.com/"},
            {"exp_delta_minutes": -10},
            {"kid": "unknown-key"},
        ],
        ids=["audience", "issuer", "expired", "unknown-kid"],
    )
    def test_verification_failure_returns_500(self, app, client, mock_httpx_client, token_kwargs):
        session_id = start_login(client)
        mock_httpx_client.post.return_value = token_response(id_token=create_id_token(**token_kwargs))

        response = client.get(f"/callback?code=abc&state={session_id}", follow_redirects=False)

        assert response.status_code == 500
        stored = load_session(app, session_id)
        assert "profile" not in stored
        assert "id_token" not in stored
        assert "access_token" not in stored

        gate = client.get("/user", follow_redirects=False)
        assert gate.status_code == 303

    def test_second_identical_callback_keeps_session_authenticated(self, app, client, mock_httpx_client):
        session_id = complete_login(client, mock_httpx_client, code="abc")
        mock_httpx_client.post.return_value = make_response(403, {"error": "invalid_grant"})

        response = client.get(f"/callback?code=abc&state={session_id}", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/user"
        assert load_session(app, session_id)["profile"]["sub"] == "auth0|user-123"
        assert client.get("/user", follow_redirects=False).status_code == 200


# ============================================================================
# AuthRequired Gate
# ============================================================================

class TestAuthRequired:

    def test_user_without_session_redirects_home(self, client):
        response = client.get("/user", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/"

    @pytest.mark.parametrize("profile", [None, {}, ""], ids=["null", "empty-dict", "empty-string"])
    def test_empty_profile_is_gated(self, app, client, profile):
        store_session(app, "stored-session", {"profile": profile, "id_token": "x"})

        response = client.get(
            "/user",
            headers={"Cookie": f"{COOKIE}=stored-session"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/"

    def test_unset_profile_is_gated(self, app, client):
        store_session(app, "stored-session", {"access_token": "x"})

        response = client.get(
            "/user",
            headers={"Cookie": f"{COOKIE}=stored-session"},
            follow_redirects=False,
        )

        assert response.status_code == 303

    def test_profile_present_passes(self, app, client):
        store_session(app, "stored-session", {"profile": {"name": "Ada <admin>", "sub": "u1"}})

        response = client.get(
            "/user",
            headers={"Cookie": f"{COOKIE}=stored-session"},
            follow_redirects=False,
        )

        assert response.status_code == 200
        assert "Welcome Ada &lt;admin&gt;" in response.text

    def test_full_flow_renders_profile(self, client, mock_httpx_client):
        complete_login(client, mock_httpx_client)

        response = client.get("/user", follow_redirects=False)

        assert response.status_code == 200
        assert "Welcome Test User" in response.text
        assert "auth0|user-123" in response.text

    def test_profile_visits_extend_session(self, settings, provider):
        clock = FakeClock()
        sessions = SessionManager(
            storage=MemoryStorage(clock=clock),
            cookie=SessionCookieConfig.from_settings(settings),
        )
        app = create_app(
            settings=settings,
            session_manager=sessions,
            providers=ProviderClientHolder(settings, client=provider),
        )
        store_session(app, "stored-session", {"profile": {"sub": "u1"}})
        headers = {"Cookie": f"{COOKIE}=stored-session"}

        with TestClient(app) as client:
            clock.now += 3000
            first = client.get("/user", headers=headers, follow_redirects=False)
            assert first.status_code == 200
            assert "Max-Age=3600" in first.headers["set-cookie"]

            # past the original expiry, but inside the window re-armed above
            clock.now += 3000
            assert client.get("/user", headers=headers, follow_redirects=False).status_code == 200

            clock.now += 3600
            idle = client.get("/user", headers=headers, follow_redirects=False)
            assert idle.status_code == 303


# ============================================================================
# Logout
# ============================================================================

class TestLogout:

    def test_logout_destroys_session_and_redirects_to_provider(self, app, client, mock_httpx_client):
        session_id = complete_login(client, mock_httpx_client)

        response = client.get("/logout", follow_redirects=False)

        assert response.status_code == 301
        location = urlparse(response.headers["location"])
        assert location.scheme == "https"
        assert location.netloc == TEST_DOMAIN
        assert location.path == "/v2/logout"
        assert parse_qs(location.query) == {
            "returnTo": ["http://testserver"],
            "client_id": [TEST_CLIENT_ID],
        }
        assert "Max-Age=0" in response.headers["set-cookie"]
        assert load_session(app, session_id) is None

    def test_replayed_cookie_after_logout_is_gated(self, client, mock_httpx_client):
        session_id = complete_login(client, mock_httpx_client)
        client.get("/logout", follow_redirects=False)
        client.cookies.clear()

        response = client.get(
            "/user",
            headers={"Cookie": f"{COOKIE}={session_id}"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/"

    def test_logout_without_session(self, client):
        response = client.get("/logout", follow_redirects=False)

        assert response.status_code == 301
        assert urlparse(response.headers["location"]).path == "/v2/logout"


# ============================================================================
# Error Responder
# ============================================================================

class TestErrorResponder:

    def test_session_backend_failure_returns_500(self, settings, provider):
        storage = AsyncMock()
        storage.get.side_effect = ConnectionError("backend down")
        app = create_app(
            settings=settings,
            session_manager=SessionManager(storage=storage),
            providers=ProviderClientHolder(settings, client=provider),
        )

        with TestClient(app) as client:
            response = client.get(
                "/user",
                headers={"Cookie": f"{COOKIE}=some-session"},
                follow_redirects=False,
            )

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Session backend failed to load session: backend down"

    def test_session_backend_failure_on_save_returns_500(self, settings, provider):
        storage = AsyncMock()
        storage.set.side_effect = ConnectionError("backend down")
        app = create_app(
            settings=settings,
            session_manager=SessionManager(storage=storage),
            providers=ProviderClientHolder(settings, client=provider),
        )

        with TestClient(app) as client:
            response = client.get("/login", follow_redirects=False)

        assert response.status_code == 500
        assert "Session backend failed to save session" in response.text
        assert "set-cookie" not in response.headers


# ============================================================================
# Health
# ============================================================================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["provider_ready"] is True
