"""FastAPI dependencies shared by the routers."""

from fastapi import HTTPException, Request, status

from .auth.session import Session
from .config import Settings


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_upstream_client(request: Request):
    """
    Dependency to get the upstream API client from app state.

    Raises:
        HTTPException: 503 if the client has not been initialized
    """
    client = getattr(request.app.state, "upstream_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not available",
        )
    return client


def get_session(request: Request) -> Session:
    """Session attached by SessionMiddleware."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Session middleware not installed",
        )
    return session
