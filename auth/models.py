"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the service do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class User:
    """A registered account.

    is_verified starts False and is flipped to True exactly once, by a
    successful email verification. password_hash is a bcrypt hash; the
    plaintext password never reaches this object.
    """

    username: str
    email: str
    password_hash: str
    id: int | None = None
    is_verified: bool = False
    created_at: str | None = None


@dataclass
class VerificationCode:
    """A one-time numeric code proving ownership of the user's email.

    Several codes may be outstanding for one user (resend does not revoke
    earlier ones). Lookups always take the newest unexpired match.
    """

    user_id: int
    token: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to a request that passed the access gate."""

    user_id: int
    email: str


class VerifyOutcome(str, Enum):
    """Result of an atomic verify-and-consume attempt in the store."""

    verified = "verified"  # this call flipped the flag and consumed the code
    already_verified = "already_verified"  # flag was already set (possibly by a concurrent call)
    no_match = "no_match"  # no unexpired code matched
