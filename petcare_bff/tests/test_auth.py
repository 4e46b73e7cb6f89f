"""
Authentication Tests for the BFF

Tests the OTP login flow: CSRF token endpoint, OTP request/verify
forwarding, session token storage, login cookies and logout.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from petcare_bff.auth.routes import LOGGED_IN_COOKIE, TOKEN_COOKIE, _token_from
from petcare_bff.auth.session import SessionStore
from petcare_bff.main import create_app
from petcare_bff.proxy.client import SESSION_TOKEN_KEY, ResponseKind, UpstreamError, UpstreamResponse

from conftest import make_settings

JSON_HEADERS = [("content-type", "application/json")]


def _set_cookie_headers(response):
    return response.headers.get_list("set-cookie")


def _cookie_header(response, name):
    for header in _set_cookie_headers(response):
        if header.startswith(f"{name}="):
            return header
    return None


@pytest.fixture
def mock_upstream():
    """Upstream client whose forward() is an AsyncMock."""
    upstream = Mock()
    upstream.forward = AsyncMock(
        return_value=UpstreamResponse(status=200, headers=JSON_HEADERS, body={"message": "sent"})
    )
    return upstream


@pytest.fixture
def mock_client(settings, mock_upstream):
    return TestClient(create_app(settings=settings, upstream=mock_upstream))


def _csrf(client):
    return {"x-csrf-token": client.get("/auth/csrf").json()["csrfToken"]}


# ============================================================================
# CSRF Endpoint
# ============================================================================

def test_csrf_endpoint_returns_session_token(client):
    response = client.get("/auth/csrf")

    assert response.status_code == status.HTTP_200_OK
    token = response.json()["csrfToken"]
    assert len(token) == 40
    assert client.get("/auth/csrf").json()["csrfToken"] == token


def test_csrf_endpoint_sets_session_cookie(client):
    response = client.get("/auth/csrf")

    assert _cookie_header(response, "pcsid") is not None


# ============================================================================
# OTP Request
# ============================================================================

def test_otp_request_is_forwarded(mock_client, mock_upstream):
    headers = _csrf(mock_client)

    response = mock_client.post("/auth/request", headers=headers, json={"email": "owner@example.com"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "sent"}

    mock_upstream.forward.assert_awaited_once()
    method, path, body, kind, upstream_headers = mock_upstream.forward.await_args.args
    assert method == "POST"
    assert path == "/api/auth/request"
    assert json.loads(body) == {"email": "owner@example.com"}
    assert kind == ResponseKind.JSON
    assert upstream_headers["content-type"] == "application/json"


def test_otp_request_requires_csrf(mock_client, mock_upstream):
    response = mock_client.post("/auth/request", json={"email": "owner@example.com"})

    assert response.status_code == status.HTTP_403_FORBIDDEN
    mock_upstream.forward.assert_not_awaited()


def test_otp_request_rate_limit_is_relayed(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.respond(429, {"message": "Too many attempts."}, JSON_HEADERS + [("retry-after", "60")])

    response = client.post("/auth/request", headers=headers, json={"email": "owner@example.com"})

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json() == {"message": "Too many attempts."}
    assert response.headers["retry-after"] == "60"


def test_otp_request_upstream_down_is_bad_gateway(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.error = UpstreamError("connection refused")

    response = client.post("/auth/request", headers=headers, json={"email": "owner@example.com"})

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert response.json() == {"error": "Bad gateway"}


# ============================================================================
# OTP Verify
# ============================================================================

def test_verify_success_stores_token_and_sets_cookies(settings, fake_upstream):
    store = SessionStore()
    client = TestClient(create_app(settings=settings, upstream=fake_upstream, session_store=store))
    headers = _csrf(client)
    fake_upstream.respond(200, {"token": "bearer-xyz", "user": {"id": 1}}, JSON_HEADERS)

    response = client.post("/auth/verify", headers=headers, json={"email": "a@b.c", "code": "123456"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"token": "bearer-xyz", "user": {"id": 1}}
    assert fake_upstream.last_call.path == "/api/auth/verify"

    token_cookie = _cookie_header(response, TOKEN_COOKIE)
    logged_in_cookie = _cookie_header(response, LOGGED_IN_COOKIE)
    assert token_cookie.startswith(f"{TOKEN_COOKIE}=bearer-xyz")
    assert "HttpOnly" in token_cookie
    assert logged_in_cookie.startswith(f"{LOGGED_IN_COOKIE}=1")
    assert "HttpOnly" not in logged_in_cookie

    (session_data,) = [store.get(sid) for sid in store._sessions]
    assert session_data[SESSION_TOKEN_KEY] == "bearer-xyz"


def test_verify_accepts_access_token_field(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.respond(200, {"access_token": "abc"}, JSON_HEADERS)

    response = client.post("/auth/verify", headers=headers, json={"code": "1"})

    assert _cookie_header(response, TOKEN_COOKIE).startswith(f"{TOKEN_COOKIE}=abc")


def test_verify_failure_sets_no_login_cookies(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.respond(422, {"message": "Invalid code."}, JSON_HEADERS)

    response = client.post("/auth/verify", headers=headers, json={"code": "000000"})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json() == {"message": "Invalid code."}
    assert _cookie_header(response, TOKEN_COOKIE) is None
    assert _cookie_header(response, LOGGED_IN_COOKIE) is None


def test_verify_success_without_token_sets_no_cookies(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.respond(200, {"message": "ok"}, JSON_HEADERS)

    response = client.post("/auth/verify", headers=headers, json={"code": "1"})

    assert response.status_code == status.HTTP_200_OK
    assert _cookie_header(response, TOKEN_COOKIE) is None


def test_verify_upstream_error_is_relayed(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.error = UpstreamError("expired", status=410, body={"message": "Code expired."})

    response = client.post("/auth/verify", headers=headers, json={"code": "1"})

    assert response.status_code == status.HTTP_410_GONE
    assert response.json() == {"message": "Code expired."}


def test_login_cookies_are_secure_in_production(fake_upstream):
    app = create_app(settings=make_settings(DEPLOYMENT_MODE="production"), upstream=fake_upstream)
    client = TestClient(app, base_url="https://testserver")
    headers = _csrf(client)
    fake_upstream.respond(200, {"token": "t"}, JSON_HEADERS)

    response = client.post("/auth/verify", headers=headers, json={"code": "1"})

    assert "Secure" in _cookie_header(response, TOKEN_COOKIE)
    assert "Secure" in _cookie_header(response, LOGGED_IN_COOKIE)


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"token": "a"}, "a"),
        ({"access_token": "b"}, "b"),
        ({"token": "", "access_token": "c"}, "c"),
        ({"token": 12}, ""),
        ({}, ""),
        ([], ""),
        (None, ""),
    ],
)
def test_token_from(data, expected):
    assert _token_from(data) == expected


# ============================================================================
# Logout
# ============================================================================

def test_logout_deletes_cookies_and_token(client, fake_upstream):
    headers = _csrf(client)
    fake_upstream.respond(200, {"token": "bearer-xyz"}, JSON_HEADERS)
    client.post("/auth/verify", headers=headers, json={"code": "1"})

    response = client.post("/auth/logout", headers=headers)

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.content == b""
    for name in (TOKEN_COOKIE, LOGGED_IN_COOKIE, "pcsid"):
        cookie = _cookie_header(response, name)
        assert cookie is not None
        assert "Max-Age=0" in cookie

    client.get("/pets")
    assert "authorization" not in fake_upstream.last_call.headers


def test_logout_requires_csrf(client):
    client.get("/auth/csrf")

    response = client.post("/auth/logout")

    assert response.status_code == status.HTTP_403_FORBIDDEN
