"""
api/routes/protected.py -- Endpoints behind the access gate.

Routes:
  GET /protected/profile -- the authenticated user's own profile

Every route here depends on require_verified_user, which yields the
AuthContext for the request or raises Unauthenticated (401) / Forbidden (403).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import ProfileResponse, ProfileUser
from auth.dependencies import get_auth_service, require_verified_user
from auth.models import AuthContext
from auth.service import AuthService

router = APIRouter(prefix="/protected")


@router.get("/profile", response_model=ProfileResponse)
def profile(
    ctx: AuthContext = Depends(require_verified_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    """Return id, email, username and creation time of the caller."""
    user = service.get_profile(ctx)
    return ProfileResponse(user=ProfileUser.from_user(user))
