"""Tests for password hashing, access tokens and bearer extraction."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.auth import extract_bearer_token, resolve_optional_user_id
from app.core.config import AuthSettings
from app.core.errors import AppError, ErrorKind
from app.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)

AUTH = AuthSettings(jwt_secret="unit-test-secret", jwt_expires_minutes=60, bcrypt_rounds=4)


class TestPasswords:
    def test_hash_round_trip(self) -> None:
        hashed = hash_password("Str0ng!Pass", rounds=4)

        assert hashed.startswith("$2b$04$")
        assert verify_password("Str0ng!Pass", hashed) is True
        assert verify_password("str0ng!pass", hashed) is False

    def test_same_password_gets_distinct_salts(self) -> None:
        assert hash_password("Str0ng!Pass", rounds=4) != hash_password("Str0ng!Pass", rounds=4)

    def test_long_passwords_are_accepted(self) -> None:
        long_password = "Aa1!" * 30
        hashed = hash_password(long_password, rounds=4)

        assert verify_password(long_password, hashed) is True

    @pytest.mark.parametrize("stored", ["", "plain-text", "$2b$04$tooshort"])
    def test_malformed_hashes_never_verify(self, stored: str) -> None:
        assert verify_password("anything", stored) is False


class TestTokens:
    def test_round_trip(self) -> None:
        token = create_access_token(user_id=7, email="jane@example.com", auth=AUTH)

        payload = decode_access_token(token, AUTH)

        assert payload.user_id == 7
        assert payload.email == "jane@example.com"

    def test_expired_token(self) -> None:
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = create_access_token(user_id=7, email="jane@example.com", auth=AUTH, now=issued)

        with pytest.raises(ExpiredSignatureError):
            decode_access_token(token, AUTH)

    def test_wrong_secret(self) -> None:
        other = AuthSettings(jwt_secret="someone-else", bcrypt_rounds=4)
        token = create_access_token(user_id=7, email="jane@example.com", auth=other)

        with pytest.raises(JWTError):
            decode_access_token(token, AUTH)

    def test_missing_user_claims(self) -> None:
        token = jwt.encode({"sub": "7"}, AUTH.jwt_secret, algorithm=AUTH.jwt_algorithm)

        with pytest.raises(JWTError):
            decode_access_token(token, AUTH)


class TestBearerExtraction:
    @pytest.mark.parametrize(
        ("header", "message"),
        [
            (None, "No token provided"),
            ("", "No token provided"),
            ("Basic abc", "Invalid token format. Use: Bearer <token>"),
            ("Bearer    ", "Token is empty"),
        ],
    )
    def test_rejections(self, header: str | None, message: str) -> None:
        with pytest.raises(AppError) as exc_info:
            extract_bearer_token(header)

        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
        assert exc_info.value.message == message

    def test_extracts_token(self) -> None:
        assert extract_bearer_token("Bearer abc.def") == "abc.def"

    def test_optional_resolution_never_raises(self) -> None:
        token = create_access_token(user_id=3, email="a@b.co", auth=AUTH)

        assert resolve_optional_user_id(f"Bearer {token}", AUTH) == 3
        assert resolve_optional_user_id("Bearer garbage", AUTH) is None
        assert resolve_optional_user_id("Basic xyz", AUTH) is None
        assert resolve_optional_user_id(None, AUTH) is None
