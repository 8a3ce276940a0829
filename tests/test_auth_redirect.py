"""
tests/test_auth_redirect.py -- Integration tests for the route guard middleware.

These tests exercise the guard end-to-end through the real ASGI stack with
follow_redirects=False. We assert on redirect Location headers directly --
following the redirect would hide them.

Coverage:
  - Protected pages: anonymous -> 302 /login?next={path}; signed in -> 200
  - Auth-only pages and "/": signed in -> 302 /dashboard; anonymous -> 200
  - Public pages: reachable either way
  - Tampered and revoked cookies are treated as anonymous and cleared
  - Path traversal attempts are rejected and logged as critical
  - POST /logout revokes the session and redirects to /login
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.tokens import AUTH_COOKIE
from security.logger import SecurityEventType, Severity

PASSWORD = "correct-horse-1"


def _cookie_cleared(resp) -> bool:
    headers = resp.headers.get_list("set-cookie")
    return any(h.startswith(f"{AUTH_COOKIE}=") and "max-age=0" in h.lower() for h in headers)


class TestAnonymous:
    def test_dashboard_redirects_to_login(self, client: TestClient) -> None:
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/dashboard"

    def test_nested_protected_path_keeps_next(self, client: TestClient) -> None:
        resp = client.get("/dashboard/settings")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/dashboard/settings"

    @pytest.mark.parametrize(
        "path", ["/", "/login", "/signup", "/forgot-password", "/reset-password", "/email-verification", "/landing"]
    )
    def test_pages_render(self, client: TestClient, path: str) -> None:
        resp = client.get(path)
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]

    def test_api_routes_are_not_redirected(self, client: TestClient) -> None:
        assert client.get("/api/auth/me").status_code == 401


class TestAuthenticated:
    @pytest.fixture(autouse=True)
    def _signed_in(self, create_user, login) -> None:
        create_user()
        login("alice@acme.io", PASSWORD)

    def test_dashboard_renders_user(self, client: TestClient) -> None:
        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert "alice@acme.io" in resp.text

    @pytest.mark.parametrize("path", ["/", "/login", "/signup", "/forgot-password", "/reset-password"])
    def test_auth_only_pages_redirect_to_dashboard(self, client: TestClient, path: str) -> None:
        resp = client.get(path)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    @pytest.mark.parametrize("path", ["/email-verification", "/landing"])
    def test_public_pages_render(self, client: TestClient, path: str) -> None:
        assert client.get(path).status_code == 200

    def test_web_logout(self, client: TestClient) -> None:
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?notice=logged_out"
        assert _cookie_cleared(resp)
        events = client.app.state.security_logger.get_recent_events(100)
        assert SecurityEventType.SESSION_REVOKED in [e.type for e in events]

        assert client.get("/dashboard").status_code == 302


class TestBadCookies:
    def test_tampered_cookie_is_cleared_and_logged(self, client: TestClient) -> None:
        client.cookies.set(AUTH_COOKIE, "not-a-real-token")
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")
        assert _cookie_cleared(resp)
        events = client.app.state.security_logger.get_recent_events(100)
        assert [e.type for e in events] == [SecurityEventType.INVALID_SESSION_TOKEN]

    def test_revoked_session_is_rejected(self, client: TestClient, create_user, login) -> None:
        create_user()
        token = login("alice@acme.io", PASSWORD)
        client.app.state.sessions.revoke(token)

        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert _cookie_cleared(resp)

    def test_stale_cookie_on_auth_only_page_is_cleared(self, client: TestClient) -> None:
        """The login page still renders; the dead cookie is dropped on the way."""
        client.cookies.set(AUTH_COOKIE, "not-a-real-token")
        resp = client.get("/login")
        assert resp.status_code == 200
        assert _cookie_cleared(resp)


class TestLoginPage:
    def test_next_is_passed_to_form(self, client: TestClient) -> None:
        resp = client.get("/login", params={"next": "/dashboard/settings"})
        assert 'data-redirect="/dashboard/settings"' in resp.text

    def test_offsite_next_is_replaced(self, client: TestClient) -> None:
        resp = client.get("/login", params={"next": "https://attacker.com"})
        assert "attacker.com" not in resp.text
        assert 'data-redirect="/dashboard"' in resp.text

    def test_unknown_notice_is_not_reflected(self, client: TestClient) -> None:
        resp = client.get("/login", params={"notice": "<script>alert(1)</script>"})
        assert "<script>alert(1)</script>" not in resp.text


class TestPathTraversal:
    def test_encoded_traversal_rejected(self, client: TestClient) -> None:
        resp = client.get("/dashboard/%2e%2e/secret")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_request"

        events = client.app.state.security_logger.get_recent_events(10)
        assert events[-1].type is SecurityEventType.PATH_TRAVERSAL_ATTEMPT
        assert events[-1].severity is Severity.CRITICAL
