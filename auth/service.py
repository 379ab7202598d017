"""
auth/service.py -- Account flows: register, verify, resend, login, access gate.

AuthService is the only place that sequences the store, the code generator,
the password hasher, the token issuer and the notifier. It is constructed
once at startup with an injected UserStore and Notifier (see api/main.py
lifespan) and shared by all requests.

Every failure leaves this module as an AuthError subclass (auth/errors.py).
SQLAlchemy and notifier exceptions are logged here with their traceback and
converted to InternalError; the HTTP boundary only ever sees typed errors.

Transactions: each store call commits on its own. The notifier is called only
after the store call that created the code has committed, so a slow mail
relay never holds a database connection.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    ConflictError,
    Forbidden,
    InternalError,
    InvalidCodeError,
    InvalidCredentials,
    NotFoundError,
    Unauthenticated,
    UnverifiedError,
    ValidationError,
)
from auth.models import AuthContext, User, VerifyOutcome
from auth.notifier import NotificationError, Notifier
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    decode_access_token,
    generate_verification_code,
    hash_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("stockdash.auth")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt input limit


@dataclass(frozen=True)
class Session:
    """A freshly issued login session."""

    token: str
    user_id: int
    email: str
    expires_in: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(raw: str) -> str:
    """Validate email syntax and return the lower-cased address.

    Raises ValidationError on malformed input.
    """
    try:
        result = validate_email((raw or "").strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("A valid email address is required.") from exc
    return result.normalized.lower()


class AuthService:
    """Auth flow controller.

    Usage:
        service = AuthService(UserStore(url), build_notifier(settings))
        service.register("alice", "a@x.com", "longpass1")
        service.verify_email("a@x.com", code)
        session = service.login("a@x.com", "longpass1")
        ctx = service.authorize(f"Bearer {session.token}")
    """

    def __init__(
        self,
        store: UserStore,
        notifier: Notifier,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        """Convert database failures inside the block into InternalError."""
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", action)
            raise InternalError() from exc

    def _new_code(self) -> tuple[str, datetime]:
        code = generate_verification_code(self.settings.code_length)
        expires_at = self._clock() + timedelta(seconds=self.settings.code_expire_seconds)
        return code, expires_at

    def _require_user(self, email: str) -> User:
        with self._store_errors("user lookup"):
            user = self.store.get_by_email(email)
        if user is None:
            raise NotFoundError()
        return user

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str) -> int:
        """Create an unverified account and send its first verification code.

        The user row and the code are written in one transaction. If the
        notification then fails, the user row is deleted again (codes
        cascade) so the email can be registered afresh.

        Returns the new user id.
        """
        email = normalize_email(email)
        username = (username or "").strip()
        if not username:
            raise ValidationError("Name is required.")
        password = password or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")

        user = User(username=username, email=email, password_hash=hash_password(password))
        code, expires_at = self._new_code()
        try:
            user_id, _ = self.store.create_user_with_code(user, code, expires_at)
        except IntegrityError as exc:
            logger.info("Registration rejected: email already registered (%s)", email)
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            logger.exception("Store failure during registration of %s", email)
            raise InternalError() from exc

        try:
            self.notifier.send_verification_code(email, username, code)
        except NotificationError as exc:
            logger.exception("Verification email to %s failed -- rolling back user %d", email, user_id)
            self._rollback_registration(user_id)
            raise InternalError("Registration failed. Please try again later.") from exc

        logger.info("User %d registered (%s)", user_id, email)
        return user_id

    def _rollback_registration(self, user_id: int) -> None:
        try:
            self.store.delete_user(user_id)
        except SQLAlchemyError:
            # The caller raises InternalError regardless; resend-code can still recover this account.
            logger.exception("Could not roll back user %d after notification failure", user_id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_email(self, email: str, code: str) -> VerifyOutcome:
        """Consume a verification code and mark the account verified.

        Returns VerifyOutcome.verified when this call flipped the flag, and
        VerifyOutcome.already_verified when the account was verified before
        (including by a concurrent request racing this one).
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if len(code) != self.settings.code_length:
            raise ValidationError(f"Code must be {self.settings.code_length} characters.")

        user = self._require_user(email)
        if user.is_verified:
            return VerifyOutcome.already_verified

        with self._store_errors("verification"):
            outcome = self.store.verify_and_consume(user.id, code, self._clock())
            if outcome is VerifyOutcome.no_match:
                # A concurrent request may have consumed this very code a moment ago.
                current = self.store.get_by_id(user.id)
                if current is not None and current.is_verified:
                    outcome = VerifyOutcome.already_verified

        if outcome is VerifyOutcome.no_match:
            logger.info("Verification failed for user %d: no matching unexpired code", user.id)
            raise InvalidCodeError()
        if outcome is VerifyOutcome.verified:
            logger.info("User %d verified", user.id)
        return outcome

    def resend_code(self, email: str) -> bool:
        """Issue and send a fresh code. Earlier unexpired codes remain valid.

        Returns False (and sends nothing) if the account is already verified.
        """
        email = normalize_email(email)
        user = self._require_user(email)
        if user.is_verified:
            return False

        code, expires_at = self._new_code()
        with self._store_errors("resend"):
            self.store.add_code(user.id, code, expires_at)

        try:
            self.notifier.send_verification_code(email, user.username, code)
        except NotificationError as exc:
            logger.exception("Verification email resend to %s failed", email)
            raise InternalError("Failed to resend validation code. Please try again later.") from exc

        logger.info("Verification code re-sent for user %d", user.id)
        return True

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Session:
        """Exchange credentials for a session token.

        Unknown email and wrong password raise the same InvalidCredentials
        with identical message, after equal bcrypt work [C1]. A correct
        password on an unverified account raises UnverifiedError and never
        yields a token.
        """
        try:
            email = normalize_email(email)
        except ValidationError as exc:
            raise InvalidCredentials() from exc

        with self._store_errors("login"):
            user = authenticate_user(self.store, email, password or "")
        if user is None:
            logger.info("Login failed for %s", email)
            raise InvalidCredentials()
        if not user.is_verified:
            logger.info("Login refused for unverified user %d", user.id)
            raise UnverifiedError()

        token = create_access_token(
            user.id,
            user.email,
            self.settings.secret_key,
            self.settings.token_expire_seconds,
        )
        logger.info("User %d logged in", user.id)
        return Session(
            token=token,
            user_id=user.id,
            email=user.email,
            expires_in=self.settings.token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Access gate
    # ------------------------------------------------------------------

    def authorize(self, authorization: str | None) -> AuthContext:
        """Two-stage check run before every protected handler.

        Stage 1 (cryptographic): the Authorization header must be
        "Bearer <jwt>" with a valid signature and unexpired "exp";
        otherwise Unauthenticated.

        Stage 2 (live): the subject must still exist and be verified;
        otherwise Forbidden. Re-reading the flag on every request means an
        administrative un-verify takes effect on tokens already issued.
        """
        if not authorization:
            raise Unauthenticated()
        parts = authorization.split()
        if len(parts) != 2 or parts[0] != "Bearer":
            raise Unauthenticated("Invalid authorization header.")

        payload = decode_access_token(parts[1], self.settings.secret_key)
        if payload is None:
            raise Unauthenticated("Invalid or expired token.")

        with self._store_errors("access check"):
            user = self.store.get_by_id(payload["user_id"])
        if user is None or not user.is_verified:
            raise Forbidden()
        return AuthContext(user_id=user.id, email=user.email)

    def get_profile(self, context: AuthContext) -> User:
        with self._store_errors("profile lookup"):
            user = self.store.get_by_id(context.user_id)
        if user is None:
            raise Forbidden()
        return user

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired_codes(self) -> int:
        with self._store_errors("code purge"):
            removed = self.store.purge_expired_codes(self._clock())
        if removed:
            logger.info("Purged %d expired verification codes", removed)
        return removed
