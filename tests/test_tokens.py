"""Unit tests for auth/tokens.py -- hashing, codes, JWT and cookies."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt
from starlette.responses import Response

from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    decode_access_token,
    generate_verification_code,
    hash_password,
    set_auth_cookie,
    verify_password,
)

KEY = "k" * 40
DAY = 24 * 60 * 60


class TestPasswords:
    def test_hash_is_not_plaintext_and_verifies(self) -> None:
        hashed = hash_password("longpass1")
        assert "longpass1" not in hashed
        assert verify_password("longpass1", hashed)
        assert not verify_password("longpass2", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("longpass1", "not-a-bcrypt-hash") is False


class TestVerificationCodes:
    def test_default_code_is_six_digits(self) -> None:
        for _ in range(50):
            code = generate_verification_code()
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    def test_custom_length(self) -> None:
        assert len(generate_verification_code(8)) == 8


class TestAccessTokens:
    def test_round_trip_carries_subject_and_expiry(self) -> None:
        token = create_access_token(7, "a@x.com", KEY, DAY)
        payload = decode_access_token(token, KEY)

        assert payload is not None
        assert payload["user_id"] == 7
        assert payload["sub"] == "7"
        assert payload["email"] == "a@x.com"
        assert payload["exp"] - payload["iat"] == DAY

    def test_lifetime_follows_argument(self) -> None:
        payload = decode_access_token(create_access_token(7, "a@x.com", KEY, 60), KEY)
        assert payload["exp"] - payload["iat"] == 60

    def test_expired_token_is_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(hours=25)
        token = jwt.encode(
            {"sub": "7", "email": "a@x.com", "iat": past, "exp": past + timedelta(hours=24)},
            KEY,
            algorithm="HS256",
        )
        assert decode_access_token(token, KEY) is None

    def test_foreign_signature_is_rejected(self) -> None:
        token = jwt.encode({"sub": "7"}, "x" * 40, algorithm="HS256")
        assert decode_access_token(token, KEY) is None

    def test_token_only_verifies_under_its_own_key(self) -> None:
        token = create_access_token(7, "a@x.com", KEY, DAY)
        assert decode_access_token(token, "y" * 40) is None

    def test_swapped_payload_is_rejected(self) -> None:
        """A payload naming another user, kept under the original signature, must fail."""
        header, _payload, signature = create_access_token(7, "a@x.com", KEY, DAY).split(".")
        _header, forged_payload, _signature = create_access_token(8, "b@x.com", KEY, DAY).split(".")
        assert decode_access_token(".".join([header, forged_payload, signature]), KEY) is None

    def test_non_numeric_subject_is_rejected(self) -> None:
        token = jwt.encode({"sub": "admin"}, KEY, algorithm="HS256")
        assert decode_access_token(token, KEY) is None

    def test_garbage_is_rejected(self) -> None:
        assert decode_access_token("not.a.jwt", KEY) is None


class TestAuthenticateUser:
    def _seed(self, store: UserStore) -> int:
        user = User(username="alice", email="a@x.com", password_hash=hash_password("longpass1"))
        user_id, _ = store.create_user_with_code(user, "123456", datetime.now(timezone.utc))
        return user_id

    def test_correct_password_returns_user_even_if_unverified(self, store: UserStore) -> None:
        user_id = self._seed(store)
        user = authenticate_user(store, "a@x.com", "longpass1")
        assert user is not None
        assert user.id == user_id
        assert user.is_verified is False

    def test_wrong_password_and_unknown_email_both_return_none(self, store: UserStore) -> None:
        self._seed(store)
        assert authenticate_user(store, "a@x.com", "wrongpass") is None
        assert authenticate_user(store, "nobody@x.com", "longpass1") is None


def test_auth_cookie_attributes() -> None:
    response = Response()
    set_auth_cookie(response, "tok", DAY)
    header = response.headers["set-cookie"]
    assert header.startswith("access_token=tok")
    assert "HttpOnly" in header
    assert "Path=/" in header
    assert "Max-Age=86400" in header
    assert "SameSite=lax" in header
    assert "Secure" not in header


def test_secure_auth_cookie() -> None:
    response = Response()
    set_auth_cookie(response, "tok", 60, secure=True)
    header = response.headers["set-cookie"]
    assert "Max-Age=60" in header
    assert "Secure" in header
