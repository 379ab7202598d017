"""Unit tests for auth/store.py -- UserStore queries and transactions.

Covers:
- create_user_with_code() writes an unverified user and its first code together
- duplicate email raises IntegrityError and writes nothing
- find_valid_code() prefers the newest code and ignores expired ones
- verify_and_consume() flips the flag and deletes the code atomically
- a consumed code cannot be consumed again
- delete_user() cascades to codes
- purge_expired_codes()
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User, VerifyOutcome
from auth.store import UserStore


def _user(email: str = "a@x.com", username: str = "alice") -> User:
    return User(username=username, email=email, password_hash="$2b$12$notarealhashbutfine")


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


def test_create_user_with_code_persists_unverified_user(store: UserStore, now: datetime) -> None:
    user_id, code_id = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))

    user = store.get_by_email("a@x.com")
    assert user is not None
    assert user.id == user_id
    assert user.username == "alice"
    assert user.is_verified is False
    assert user.created_at

    codes = store.list_codes(user_id)
    assert [c.id for c in codes] == [code_id]
    assert codes[0].token == "123456"


def test_duplicate_email_raises_and_writes_nothing(store: UserStore, now: datetime) -> None:
    first_id, _ = store.create_user_with_code(_user(), "111111", now + timedelta(minutes=30))

    with pytest.raises(IntegrityError):
        store.create_user_with_code(_user(username="mallory"), "222222", now + timedelta(minutes=30))

    assert store.get_by_email("a@x.com").username == "alice"
    assert [c.token for c in store.list_codes(first_id)] == ["111111"]


def test_get_by_id_unknown_returns_none(store: UserStore) -> None:
    assert store.get_by_id(999) is None
    assert store.get_by_email("nobody@x.com") is None


def test_find_valid_code_prefers_newest_match(store: UserStore, now: datetime) -> None:
    user_id, first_id = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))
    second_id = store.add_code(user_id, "123456", now + timedelta(minutes=30))

    code = store.find_valid_code(user_id, "123456", now)
    assert code is not None
    assert code.id == second_id
    assert second_id > first_id


def test_find_valid_code_ignores_expired(store: UserStore, now: datetime) -> None:
    user_id, _ = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))

    assert store.find_valid_code(user_id, "123456", now + timedelta(minutes=31)) is None
    assert store.find_valid_code(user_id, "654321", now) is None


def test_verify_and_consume_flips_flag_and_deletes_code(store: UserStore, now: datetime) -> None:
    user_id, code_id = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))
    other_id = store.add_code(user_id, "999999", now + timedelta(minutes=30))

    assert store.verify_and_consume(user_id, "123456", now) is VerifyOutcome.verified

    assert store.get_by_id(user_id).is_verified is True
    remaining = [c.id for c in store.list_codes(user_id)]
    assert code_id not in remaining
    assert other_id in remaining


def test_consumed_code_cannot_be_consumed_again(store: UserStore, now: datetime) -> None:
    user_id, _ = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))
    assert store.verify_and_consume(user_id, "123456", now) is VerifyOutcome.verified

    assert store.verify_and_consume(user_id, "123456", now) is VerifyOutcome.no_match


def test_verify_and_consume_expired_changes_nothing(store: UserStore, now: datetime) -> None:
    user_id, code_id = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))

    outcome = store.verify_and_consume(user_id, "123456", now + timedelta(minutes=30))

    assert outcome is VerifyOutcome.no_match
    assert store.get_by_id(user_id).is_verified is False
    assert [c.id for c in store.list_codes(user_id)] == [code_id]


def test_verify_and_consume_on_verified_user_keeps_code(store: UserStore, now: datetime) -> None:
    """The conditional UPDATE touches no row, so the code delete must not happen either."""
    user_id, code_id = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))
    store.set_verified(user_id, True)

    assert store.verify_and_consume(user_id, "123456", now) is VerifyOutcome.already_verified
    assert [c.id for c in store.list_codes(user_id)] == [code_id]


def test_set_verified_unknown_user(store: UserStore) -> None:
    assert store.set_verified(42, True) is False


def test_delete_user_cascades_to_codes(store: UserStore, now: datetime) -> None:
    user_id, _ = store.create_user_with_code(_user(), "123456", now + timedelta(minutes=30))
    store.add_code(user_id, "654321", now + timedelta(minutes=30))

    assert store.delete_user(user_id) is True
    assert store.get_by_id(user_id) is None
    assert store.list_codes(user_id) == []


def test_purge_expired_codes(store: UserStore, now: datetime) -> None:
    user_id, _ = store.create_user_with_code(_user(), "111111", now - timedelta(minutes=1))
    live_id = store.add_code(user_id, "222222", now + timedelta(minutes=30))

    assert store.purge_expired_codes(now) == 1
    assert [c.id for c in store.list_codes(user_id)] == [live_id]


def test_ping(store: UserStore) -> None:
    assert store.ping() is True
