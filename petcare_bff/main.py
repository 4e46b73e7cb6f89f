"""
FastAPI BFF Application Factory
===============================

This is the main entry point for the backend-for-frontend that sits
between the PetCare single-page UI and the upstream PetCare API.

Architecture:
    Browser (React UI) -> BFF (this service) -> Upstream PetCare API

Request pipeline (outermost first):
    - Session   : loads the server-side session from the signed cookie
    - Logging   : one INFO record per request (monitoring paths skipped)
    - CSRF      : issues the session token, rejects unmatched mutations
    - Routes    : /health, /session/ping, /auth/*, proxied resource prefixes
    - Errors    : 404 and uncaught failures become a JSON error envelope

Environment Variables:
    - SESSION_SECRET: Secret for signing the session cookie (required)
    - BACKEND_URL: Upstream API URL (default: http://localhost:8080)
    - DEPLOYMENT_MODE: development, production or test
    - LOG_LEVEL / LOG_FORMAT: Logging level and json/text output
    See petcare_bff/config.py for the full list.

Running the Service:
    Development:
        uvicorn petcare_bff.main:create_app --factory --reload --port 5174

    Production:
        petcare-bff
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import auth_router
from .auth.csrf import CSRFMiddleware
from .auth.session import Session, SessionStore
from .config import Settings, get_settings
from .deps import get_session
from .errors import register_error_handlers
from .logger import setup_logging
from .middleware import RequestLoggingMiddleware, SessionMiddleware
from .proxy import build_proxy_router
from .proxy.client import HttpxUpstreamClient, UpstreamClient

logger = logging.getLogger("petcare_bff.main")

SESSION_PURGE_INTERVAL_SECONDS = 600


async def _purge_sessions_periodically(store: SessionStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        removed = store.purge_expired()
        if removed:
            logger.debug(f"Purged {removed} expired sessions")


def create_app(
    settings: Optional[Settings] = None,
    upstream: Optional[UpstreamClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (upstream HTTP client, session purging)
        - Session, CSRF, request logging and CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        upstream: Upstream client to use instead of the httpx client
        session_store: Session store to use (in-memory store if omitted)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    store = session_store if session_store is not None else SessionStore(settings.SESSION_MAX_AGE_SECONDS)

    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_client = None
        if app.state.upstream_client is None:
            owned_client = HttpxUpstreamClient.create(
                settings.backend_url_str, settings.BACKEND_TIMEOUT_SECONDS
            )
            app.state.upstream_client = owned_client

        purge_task = asyncio.create_task(
            _purge_sessions_periodically(store, SESSION_PURGE_INTERVAL_SECONDS)
        )

        logger.info(
            "PetCare BFF started",
            extra={
                "backend_url": settings.backend_url_str,
                "mode": settings.DEPLOYMENT_MODE.value,
                "proxy_prefixes": settings.proxy_prefixes_list,
            },
        )

        try:
            yield
        finally:
            purge_task.cancel()
            with suppress(asyncio.CancelledError):
                await purge_task
            if owned_client is not None:
                await owned_client.aclose()
                app.state.upstream_client = None
            logger.info("PetCare BFF shutdown complete")

    app = FastAPI(
        title="PetCare BFF",
        description="Session, CSRF and proxy layer between the PetCare UI and API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.session_store = store
    app.state.upstream_client = upstream

    register_error_handlers(app, settings.DEPLOYMENT_MODE, settings.TRUST_PROXY_HOPS)

    # Added innermost first: CSRF runs inside logging, logging inside session.
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        RequestLoggingMiddleware,
        skip_prefixes=settings.log_skip_prefixes_list,
        trusted_hops=settings.TRUST_PROXY_HOPS,
    )
    app.add_middleware(
        SessionMiddleware,
        store=store,
        secret=settings.SESSION_SECRET,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age_seconds=settings.SESSION_MAX_AGE_SECONDS,
        same_site=settings.COOKIE_SAMESITE,
        https_only=settings.secure_cookies,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, bool]:
        return {"ok": True}

    @app.get("/session/ping", tags=["System"])
    async def session_ping(session: Session = Depends(get_session)) -> Dict[str, int]:
        """Count requests in the current session (verifies cookies work)."""
        session["views"] = int(session.get("views", 0)) + 1
        return {"views": session["views"]}

    app.include_router(auth_router)
    app.include_router(build_proxy_router(settings.proxy_prefixes_list))

    return app


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    settings = get_settings()

    uvicorn.run(
        "petcare_bff.main:create_app",
        factory=True,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        proxy_headers=False,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
