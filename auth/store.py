"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_code are the mappers.
Service and route code never touches SQL directly.

Transactions:
  Every mutation runs inside its own engine.begin() block and commits before
  the method returns. No method holds a transaction open across a call to the
  notifier -- the service calls the notifier only after the store returns.

  verify_and_consume() is the one multi-statement write: it flips is_verified
  with a conditional UPDATE (WHERE is_verified = 0) and deletes the consumed
  code in the same transaction. The conditional UPDATE is the compare-and-set
  that makes concurrent verifications safe without in-process locks.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision so that
lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import User, VerificationCode, VerifyOutcome

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),  # not unique -- display name
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_codes = Table(
    "validation_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(16), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool.
    foreign_keys=ON is required for ON DELETE CASCADE on validation_codes.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and VerificationCode entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id, code_id = store.create_user_with_code(user, "123456", expires_at)
        outcome = store.verify_and_consume(user_id, "123456", now)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user_with_code(self, user: User, token: str, expires_at: datetime) -> tuple[int, int]:
        """Insert a new unverified user and its first verification code atomically.

        Returns (user_id, code_id). Raises sqlalchemy.exc.IntegrityError if
        the email is already registered; nothing is written in that case.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    is_verified=False,
                    created_at=now,
                )
            )
            user_id = result.inserted_primary_key[0]
            code_result = conn.execute(
                _codes.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=to_iso(expires_at),
                    created_at=now,
                )
            )
            return user_id, code_result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (stored lower-cased). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).first()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).first()
        return _row_to_user(row) if row is not None else None

    def set_verified(self, user_id: int, verified: bool) -> bool:
        """Administratively set the verification flag.

        Not used by the verification flow (see verify_and_consume). Clearing
        the flag revokes access for already-issued tokens because the access
        gate re-reads it on every request.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_verified=verified))
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user row; its verification codes go with it (ON DELETE CASCADE).

        Only used to roll back a registration whose notification failed.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verification code queries
    # ------------------------------------------------------------------

    def add_code(self, user_id: int, token: str, expires_at: datetime) -> int:
        """Insert an additional verification code for a user and return its ID.

        Earlier codes are left in place.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _codes.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=to_iso(expires_at),
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def find_valid_code(self, user_id: int, token: str, now: datetime) -> VerificationCode | None:
        """Return the newest unexpired code matching token, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_latest_code_query(user_id, token, now)).first()
        return _row_to_code(row) if row is not None else None

    def list_codes(self, user_id: int) -> list[VerificationCode]:
        """Return every stored code for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _codes.select().where(_codes.c.user_id == user_id).order_by(_codes.c.id.desc())
            ).fetchall()
        return [_row_to_code(r) for r in rows]

    def verify_and_consume(self, user_id: int, token: str, now: datetime) -> VerifyOutcome:
        """Atomically mark the user verified and delete the matching code.

        Steps, in one transaction:
          1. Select the newest unexpired code for (user_id, token).
          2. UPDATE users SET is_verified = 1 WHERE id = ? AND is_verified = 0.
          3. DELETE the selected code.

        If step 2 updates no row, a concurrent request already verified the
        user: the transaction ends without deleting anything and the outcome
        is already_verified. Either both mutations apply or neither does.
        """
        with self.engine.begin() as conn:
            code_row = conn.execute(_latest_code_query(user_id, token, now)).first()
            if code_row is None:
                return VerifyOutcome.no_match
            updated = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_verified == False))  # noqa: E712
                .values(is_verified=True)
            )
            if updated.rowcount == 0:
                return VerifyOutcome.already_verified
            conn.execute(_codes.delete().where(_codes.c.id == code_row.id))
        return VerifyOutcome.verified

    def purge_expired_codes(self, now: datetime | None = None) -> int:
        """Delete all codes whose expiry has passed. Returns number of rows removed."""
        cutoff = to_iso(now) if now is not None else _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.expires_at <= cutoff))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------


def _latest_code_query(user_id: int, token: str, now: datetime):
    return (
        _codes.select()
        .where((_codes.c.user_id == user_id) & (_codes.c.token == token) & (_codes.c.expires_at > to_iso(now)))
        .order_by(_codes.c.id.desc())
        .limit(1)
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
    )


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
