"""CSRF protection for the BFF.

Every session gets one random token (see ``GET /auth/csrf``). The UI echoes
it back in ``X-CSRF-Token`` (or ``X-XSRF-Token``) on state-mutating requests
(POST, PUT, PATCH, DELETE); anything else is rejected with 403 before it
reaches a route or the upstream API.

GET/HEAD/OPTIONS are never checked.
"""

import hmac
import logging
import secrets
from typing import Any, MutableMapping, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

CSRF_SESSION_KEY = "csrfToken"
CSRF_HEADER_NAMES = ("x-csrf-token", "x-xsrf-token")
CSRF_TOKEN_BYTES = 20

_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CSRF_REJECTION = {"error": "CSRF token missing or invalid"}


def ensure_csrf_token(session: Optional[MutableMapping[str, Any]]) -> Optional[str]:
    """
    Issue the session's CSRF token if it does not have one yet.

    Args:
        session: Session data, or None when the request has no session

    Returns:
        The session's token, or None when there is no session
    """
    if session is None:
        return None

    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_hex(CSRF_TOKEN_BYTES)
        session[CSRF_SESSION_KEY] = token
    return token


def requires_csrf(method: str) -> bool:
    return method.upper() in _MUTATING_METHODS


def provided_csrf_token(request: Request) -> Optional[str]:
    """Client-supplied token, from the first CSRF header that is set."""
    for name in CSRF_HEADER_NAMES:
        value = request.headers.get(name)
        if value:
            return value
    return None


def csrf_token_matches(
    session: Optional[MutableMapping[str, Any]],
    provided: Optional[str],
) -> bool:
    """True only when the session has a token and the client sent the same one."""
    expected = session.get(CSRF_SESSION_KEY) if session is not None else None
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class CSRFMiddleware(BaseHTTPMiddleware):
    """Issue the session token and reject mutating requests that do not echo it.

    Must run inside the session middleware so ``request.state.session`` is set.
    A session started by the current request gets its token from
    ``GET /auth/csrf`` only, so cookieless traffic stores nothing.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        session = getattr(request.state, "session", None)
        if session is not None and not getattr(session, "is_new", False):
            ensure_csrf_token(session)

        if not requires_csrf(request.method):
            return await call_next(request)

        if csrf_token_matches(session, provided_csrf_token(request)):
            return await call_next(request)

        logger.warning(
            "CSRF: blocked %s %s (origin=%s)",
            request.method.upper(), request.url.path, request.headers.get("origin", "unknown"),
        )
        return JSONResponse(status_code=403, content=CSRF_REJECTION)
