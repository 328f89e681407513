"""Unit tests for JWT and password security module."""

import jwt
import pytest

from crm_api.core.security import (
    create_access_token,
    decode_token,
    generate_random_password,
    hash_password,
    verify_password,
)

SECRET = "test-secret-key-not-for-production-use"


class TestPasswordHashing:
    """Tests for bcrypt password hashing and verification."""

    def test_hash_and_verify(self) -> None:
        hashed = hash_password("mypassword123")
        assert verify_password("mypassword123", hashed)

    def test_wrong_password_fails(self) -> None:
        hashed = hash_password("mypassword123")
        assert not verify_password("wrongpassword", hashed)

    def test_hash_is_different_each_time(self) -> None:
        assert hash_password("same") != hash_password("same")

    def test_random_password(self) -> None:
        first = generate_random_password()
        assert len(first) == 12
        assert first != generate_random_password()
        assert len(generate_random_password(20)) == 20


class TestAccessTokens:
    """Tests for JWT creation and decoding."""

    def test_round_trip_claims(self) -> None:
        token = create_access_token("user-id", "admin", "client-id", SECRET)
        payload = decode_token(token, SECRET)
        assert payload["sub"] == "user-id"
        assert payload["role"] == "admin"
        assert payload["client_id"] == "client-id"
        assert payload["type"] == "access"

    def test_wrong_secret_rejected(self) -> None:
        token = create_access_token("user-id", "admin", "client-id", SECRET)
        with pytest.raises(jwt.InvalidTokenError):
            decode_token(token, "another-secret-key-that-is-long-enough")

    def test_expired_token_rejected(self) -> None:
        token = create_access_token("user-id", "admin", "client-id", SECRET, expires_minutes=-1)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_token(token, SECRET)
