"""
Authentication routes for the OTP login flow.

The upstream API issues one-time passwords and, once verified, a bearer
token. The BFF keeps that token in the server-side session and marks the
browser as logged in with cookies; the UI never sees the token itself.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from ..config import Settings
from ..deps import get_app_settings, get_session, get_upstream_client
from ..proxy.client import SESSION_TOKEN_KEY, ResponseKind, UpstreamError, build_upstream_headers
from ..proxy.dispatcher import failure_response, relay_response
from .csrf import ensure_csrf_token
from .session import Session

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "pc_token"
LOGGED_IN_COOKIE = "pc_logged_in"
AUTH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


def _token_from(data) -> str:
    if not isinstance(data, dict):
        return ""
    token = data.get("token") or data.get("access_token")
    return token if isinstance(token, str) else ""


async def _forward_json(request: Request, session: Session, settings: Settings, client, path: str):
    headers = build_upstream_headers(request, session, settings.LARAVEL_API_KEY)
    body = await request.body()
    return await client.forward("POST", f"{settings.API_PREFIX}{path}", body, ResponseKind.JSON, headers)


# =============================================================================
# CSRF Token
# =============================================================================

@auth_router.get("/csrf")
async def csrf_token(session: Session = Depends(get_session)):
    """Return the session's CSRF token for the UI to echo on mutations."""
    return {"csrfToken": ensure_csrf_token(session)}


# =============================================================================
# OTP Flow
# =============================================================================

@auth_router.post("/request")
async def request_otp(
    request: Request,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    client=Depends(get_upstream_client),
) -> Response:
    """Ask the upstream API to send a one-time password."""
    try:
        upstream = await _forward_json(request, session, settings, client, "/auth/request")
    except UpstreamError as e:
        return failure_response(e)
    return relay_response(upstream, ResponseKind.JSON)


@auth_router.post("/verify")
async def verify_otp(
    request: Request,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    client=Depends(get_upstream_client),
) -> Response:
    """
    Verify the one-time password.

    On success the upstream token is stored in the session and the
    ``pc_token`` (httpOnly) and ``pc_logged_in`` (readable by the UI)
    cookies are set.
    """
    try:
        upstream = await _forward_json(request, session, settings, client, "/auth/verify")
    except UpstreamError as e:
        return failure_response(e)

    response = relay_response(upstream, ResponseKind.JSON)

    token = _token_from(upstream.body) if 200 <= upstream.status < 300 else ""
    if token:
        session[SESSION_TOKEN_KEY] = token
        cookie_options = {
            "max_age": AUTH_COOKIE_MAX_AGE,
            "path": "/",
            "secure": settings.secure_cookies,
            "samesite": settings.COOKIE_SAMESITE,
        }
        response.set_cookie(TOKEN_COOKIE, token, httponly=True, **cookie_options)
        response.set_cookie(LOGGED_IN_COOKIE, "1", httponly=False, **cookie_options)
        logger.info("User logged in")

    return response


# =============================================================================
# Logout
# =============================================================================

@auth_router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session: Session = Depends(get_session)) -> Response:
    """Clear the session and the login cookies."""
    session.clear()

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(TOKEN_COOKIE, path="/")
    response.delete_cookie(LOGGED_IN_COOKIE, path="/")
    return response
