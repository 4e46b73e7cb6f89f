"""
Authentication Package

This package handles sessions, CSRF protection and the OTP login flow of
the BFF.

Key responsibilities:
- Server-side session store and signed session cookie
- Per-session CSRF token issuance and enforcement on mutating requests
- OTP request/verify forwarding; the upstream bearer token is kept in the
  session and attached to proxied requests
- Logout (session and login cookies cleared)

Modules:
- session: Session store and cookie signing
- csrf: CSRF token helpers and middleware
- routes: Public authentication endpoints (/auth/csrf, /auth/verify, etc.)

The authentication flow:
1. UI fetches a CSRF token via GET /auth/csrf
2. UI requests a one-time password via POST /auth/request
3. UI submits the code via POST /auth/verify
4. BFF stores the upstream token in the session and sets login cookies
5. Proxied requests carry the token to the upstream API as a Bearer header
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
