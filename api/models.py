"""
API request and response models for the stockdash auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Input constraints here are the first line of validation: a request that
fails them is rejected with 422 before the service or the store is touched.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Body for POST /register.

    No whitespace stripping here: the password must reach the hasher exactly
    as typed, the same way login receives it. The service trims the name.
    """

    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=1, max_length=255)


class VerifyRequest(BaseModel):
    """Body for POST /verify."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    code: str = Field(min_length=6, max_length=6)


class LoginRequest(BaseModel):
    """Body for POST /login.

    No length rule on password: a too-short password is simply wrong, and
    must produce the same 401 as any other wrong password.
    """

    email: EmailStr
    password: str = Field(max_length=255)


class ResendCodeRequest(BaseModel):
    """Body for POST /resend-code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    token: str
    token_type: str = "bearer"
    expires_in: int


class ProfileUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "ProfileUser":
        """Build the public view of a User. The password hash never leaves the domain object."""
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            created_at=user.created_at or "",
        )


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: ProfileUser


class ErrorResponse(BaseModel):
    """Envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    code: str
    message: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
