"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access gate is a dependency, not ambient middleware: a protected route
declares `ctx: AuthContext = Depends(require_verified_user)` and receives the
authenticated identity as an explicit argument.

Only the Authorization: Bearer header is accepted. The login cookie is for
browser convenience on the front end; the gate does not read it.

Failures propagate as AuthError subclasses (Unauthenticated -> 401,
Forbidden -> 403) and are translated by the handler in api/main.py.

auth/dependencies.py may import from fastapi because this module is part of
the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import AuthContext
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService created in the application lifespan."""
    return request.app.state.auth_service


def require_verified_user(request: Request) -> AuthContext:
    """Require a valid bearer token for a verified, existing user.

    Use as a FastAPI dependency:
        @router.get("/protected/profile")
        def profile(ctx: AuthContext = Depends(require_verified_user)): ...
    """
    return get_auth_service(request).authorize(request.headers.get("Authorization"))
