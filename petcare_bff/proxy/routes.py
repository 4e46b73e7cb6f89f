"""
Proxy Routes - Upstream Request Forwarding
==========================================

Resource paths used by the UI (``/pets/...``, ``/user/...``, ...) are
forwarded to the upstream API under its ``/api`` namespace.

Security Model:
---------------
1. CSRF is enforced by middleware before a mutating request gets here
2. Only accept, content-type and user-agent are forwarded from the browser
3. The upstream bearer token comes from the server-side session, never
   from the browser
4. The optional service key is added as x-api-key
"""

import logging
from typing import Iterable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..auth.session import Session
from ..config import Settings
from ..deps import get_app_settings, get_session, get_upstream_client
from .client import UpstreamClient, build_upstream_headers
from .dispatcher import dispatch, rewrite_path

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Auth endpoints served by the upstream API as-is
FORWARDED_AUTH_PATHS = ("/auth/me", "/auth/status")


def _raw_path(request: Request) -> str:
    """Path as sent by the client, percent-escapes intact."""
    raw = request.scope.get("raw_path")
    return raw.decode("latin-1") if raw else request.url.path


def _make_endpoint(prefix: str):
    async def proxy_endpoint(
        request: Request,
        settings: Settings = Depends(get_app_settings),
        session: Session = Depends(get_session),
        client: UpstreamClient = Depends(get_upstream_client),
    ) -> Response:
        target = rewrite_path(_raw_path(request), prefix, settings.API_PREFIX)
        if request.url.query:
            target = f"{target}?{request.url.query}"

        headers = build_upstream_headers(request, session, settings.LARAVEL_API_KEY)
        return await dispatch(request, client, target, headers)

    proxy_endpoint.__name__ = f"proxy_{prefix.strip('/').replace('-', '_').replace('/', '_')}"
    return proxy_endpoint


def build_proxy_router(prefixes: Iterable[str]) -> APIRouter:
    """
    Create the router forwarding every path under ``prefixes`` upstream.

    Args:
        prefixes: Path prefixes such as "/pets"

    Returns:
        APIRouter with one catch-all route per prefix
    """
    router = APIRouter(tags=["Upstream Proxy"])

    for prefix in prefixes:
        endpoint = _make_endpoint(prefix)
        router.add_api_route(prefix, endpoint, methods=PROXY_METHODS, include_in_schema=False)
        router.add_api_route(
            f"{prefix}/{{path:path}}", endpoint, methods=PROXY_METHODS, include_in_schema=False
        )
        logger.debug(f"Proxying {prefix}/* upstream")

    for path in FORWARDED_AUTH_PATHS:
        router.add_api_route(path, _make_endpoint(path), methods=["GET"], include_in_schema=False)

    return router
