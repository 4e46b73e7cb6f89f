"""
Session Management Module
=========================

Server-side sessions for the BFF.

Session data (CSRF token, upstream bearer token, counters) lives in a
key-value store keyed by session id. The browser only holds the id, inside
an HS256-signed JWT cookie, so a client cannot forge or tamper with it.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, MutableMapping, Optional, Tuple

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

logger = logging.getLogger(__name__)

SESSION_COOKIE_ALGORITHM = "HS256"
SESSION_COOKIE_ISSUER = "petcare-bff"


# =============================================================================
# Exceptions
# =============================================================================

class SessionError(Exception):
    """Raised when a session cookie cannot be created or verified."""


# =============================================================================
# Session Objects
# =============================================================================

class Session(MutableMapping[str, Any]):
    """
    Mutable view over one session's data.

    Tracks whether the data changed during the request so the middleware
    only writes the store and the cookie when needed.
    """

    def __init__(self, session_id: str, data: Optional[Dict[str, Any]] = None, is_new: bool = False):
        self.session_id = session_id
        self.is_new = is_new
        self.modified = False
        self.cleared = False
        self._data: Dict[str, Any] = dict(data or {})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.modified = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.modified = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        """Drop all data and mark the session for deletion."""
        self._data.clear()
        self.cleared = True
        self.modified = True

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __repr__(self) -> str:
        return f"Session(id={self.session_id[:8]}..., keys={sorted(self._data)})"


class SessionStore:
    """
    In-memory session store keyed by session id.

    Entries expire ``max_age_seconds`` after their last save. Each entry is
    only touched by the request that owns the session, so no locking is
    needed on a single event loop.
    """

    def __init__(self, max_age_seconds: int = 7 * 24 * 60 * 60) -> None:
        self.max_age_seconds = max_age_seconds
        self._sessions: Dict[str, Tuple[datetime, Dict[str, Any]]] = {}

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None

        expires_at, data = entry
        if expires_at <= datetime.now(timezone.utc):
            del self._sessions[session_id]
            return None
        return dict(data)

    def save(self, session_id: str, data: Dict[str, Any]) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.max_age_seconds)
        self._sessions[session_id] = (expires_at, dict(data))

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = datetime.now(timezone.utc)
        expired = [sid for sid, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


# =============================================================================
# Cookie Signing
# =============================================================================

def create_session_cookie(session_id: str, secret: str, max_age_seconds: int) -> str:
    """
    Sign a session id into a cookie value.

    Args:
        session_id: Store key of the session
        secret: SESSION_SECRET
        max_age_seconds: Lifetime of the cookie

    Returns:
        Encoded JWT string

    Raises:
        SessionError: If signing fails
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sid": session_id,
        "iat": now,
        "exp": now + timedelta(seconds=max_age_seconds),
        "iss": SESSION_COOKIE_ISSUER,
    }

    try:
        return jwt.encode(payload, secret, algorithm=SESSION_COOKIE_ALGORITHM)
    except Exception as e:
        logger.error(f"Failed to sign session cookie: {e}", exc_info=True)
        raise SessionError(f"Failed to sign session cookie: {e}") from e


def read_session_cookie(cookie: Optional[str], secret: str) -> Optional[str]:
    """
    Verify a session cookie and return the session id it carries.

    Returns None for a missing, expired, tampered or malformed cookie; the
    caller then starts a fresh session.
    """
    if not cookie:
        return None

    try:
        decoded = jwt.decode(
            cookie,
            secret,
            algorithms=[SESSION_COOKIE_ALGORITHM],
            issuer=SESSION_COOKIE_ISSUER,
            options={"require": ["exp", "iat", "sid"]},
        )
    except ExpiredSignatureError:
        logger.debug("Session cookie expired")
        return None
    except InvalidTokenError as e:
        logger.warning(f"Invalid session cookie: {e}")
        return None

    session_id = decoded.get("sid")
    return session_id if isinstance(session_id, str) and session_id else None


def load_session(store: SessionStore, cookie: Optional[str], secret: str) -> Session:
    """Resolve the request's session from its cookie, starting a new one if needed."""
    session_id = read_session_cookie(cookie, secret)
    if session_id is not None:
        data = store.get(session_id)
        if data is not None:
            return Session(session_id, data)

    return Session(store.new_session_id(), is_new=True)


__all__ = [
    "Session",
    "SessionStore",
    "SessionError",
    "create_session_cookie",
    "read_session_cookie",
    "load_session",
]
