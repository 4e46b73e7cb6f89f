"""
HTTP middleware for the BFF.

- SessionMiddleware: loads the server-side session named by the signed
  session cookie and persists it after the response is produced.
- RequestLoggingMiddleware: one INFO record per inbound request, skipping
  monitoring paths.

CSRF enforcement lives in ``petcare_bff.auth.csrf``.
"""

import logging
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .auth.session import Session, SessionStore, create_session_cookie, load_session
from .logger import client_ip

logger = logging.getLogger("petcare_bff.requests")
session_logger = logging.getLogger("petcare_bff.session")


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.session`` and write it back when it changed."""

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        secret: str,
        cookie_name: str = "pcsid",
        max_age_seconds: int = 7 * 24 * 60 * 60,
        same_site: str = "lax",
        https_only: bool = False,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.secret = secret
        self.cookie_name = cookie_name
        self.max_age_seconds = max_age_seconds
        self.same_site = same_site
        self.https_only = https_only

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        session = load_session(self.store, request.cookies.get(self.cookie_name), self.secret)
        request.state.session = session

        response = await call_next(request)
        self._commit(session, response)
        return response

    def _commit(self, session: Session, response: Response) -> None:
        if session.cleared:
            self.store.delete(session.session_id)
            if not session.is_new:
                response.delete_cookie(
                    self.cookie_name,
                    path="/",
                    secure=self.https_only,
                    httponly=True,
                    samesite=self.same_site,
                )
            session_logger.debug("Session cleared")
            return

        if not session.modified:
            return

        self.store.save(session.session_id, session.to_dict())
        response.set_cookie(
            self.cookie_name,
            create_session_cookie(session.session_id, self.secret, self.max_age_seconds),
            max_age=self.max_age_seconds,
            path="/",
            secure=self.https_only,
            httponly=True,
            samesite=self.same_site,
        )
        if session.is_new:
            session_logger.debug("Started new session")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, full URL and client IP of every non-monitoring request."""

    def __init__(
        self,
        app: ASGIApp,
        skip_prefixes: Optional[Iterable[str]] = None,
        trusted_hops: int = 0,
    ) -> None:
        super().__init__(app)
        self.skip_prefixes = tuple(skip_prefixes or ())
        self.trusted_hops = trusted_hops

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if not request.url.path.startswith(self.skip_prefixes):
            self._log(request)
        return await call_next(request)

    def _log(self, request: Request) -> None:
        ip = client_ip(request, self.trusted_hops)
        logger.info(
            f"Request: {request.method} {request.url} from IP: {ip}",
            extra={
                "method": request.method,
                "url": str(request.url),
                "ip": ip,
            },
        )
