"""
auth/errors.py -- Typed error taxonomy for the authentication flows.

Every failure the flows can produce is an AuthError subclass carrying an
ErrorKind. The service raises them; the HTTP boundary (api/main.py) owns the
single kind -> status mapping. Messages are safe to show to clients: they
never contain SQL, stack traces, hashes, or codes.

Layer rule: no imports from api/. Stdlib only.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation_error"
    conflict = "conflict"
    not_found = "not_found"
    invalid_code = "invalid_code"
    invalid_credentials = "invalid_credentials"
    unverified = "unverified"
    unauthenticated = "unauthenticated"
    forbidden = "forbidden"
    internal = "internal_error"


class AuthError(Exception):
    """Base class. Subclasses set kind and a default public message."""

    kind: ErrorKind = ErrorKind.internal
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    kind = ErrorKind.validation
    default_message = "Request validation failed."


class ConflictError(AuthError):
    # Deliberately vague -- the registration response does not confirm the email exists.
    kind = ErrorKind.conflict
    default_message = "Registration failed. Please try again later."


class NotFoundError(AuthError):
    kind = ErrorKind.not_found
    default_message = "User not found."


class InvalidCodeError(AuthError):
    kind = ErrorKind.invalid_code
    default_message = "Invalid or expired validation code."


class InvalidCredentials(AuthError):
    kind = ErrorKind.invalid_credentials
    default_message = "Invalid email or password."


class UnverifiedError(AuthError):
    kind = ErrorKind.unverified
    default_message = "Email not verified. Please verify your email to login."


class Unauthenticated(AuthError):
    kind = ErrorKind.unauthenticated
    default_message = "Authentication required."


class Forbidden(AuthError):
    kind = ErrorKind.forbidden
    default_message = "Account is not allowed to access this resource."


class InternalError(AuthError):
    kind = ErrorKind.internal
    default_message = "An unexpected error occurred. Please try again later."
