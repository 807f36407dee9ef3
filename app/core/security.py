"""Password hashing and access token helpers.

Passwords are stored as bcrypt hashes. Tokens are HS256 JWTs carrying the
user id and email; decoding lets python-jose errors propagate so the
exception handlers can map them to 401.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from app.core.config import AuthSettings

# bcrypt only reads the first 72 bytes; newer releases reject longer input.
_BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class TokenPayload:
    """Identity carried by a verified access token."""

    user_id: int
    email: str


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, *, rounds: int) -> str:
    """Hash a password with a fresh salt."""
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(password: str, hashed: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("ascii"))
    except ValueError:
        return False


def create_access_token(
    *, user_id: int, email: str, auth: AuthSettings, now: datetime | None = None
) -> str:
    """Sign an access token for the given user.

    Args:
        user_id: Database id of the user.
        email: User email, echoed in the payload.
        auth: Signing configuration.
        now: Issue time override (tests).

    Returns:
        Encoded JWT string.
    """
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "userId": user_id,
        "email": email,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=auth.jwt_expires_minutes)).timestamp()),
    }
    return jwt.encode(claims, auth.jwt_secret, algorithm=auth.jwt_algorithm)


def decode_access_token(token: str, auth: AuthSettings) -> TokenPayload:
    """Verify a token and return its identity.

    Raises:
        jose.ExpiredSignatureError: The token is past its expiry.
        jose.JWTError: The token is malformed, tampered with or lacks claims.
    """
    claims = jwt.decode(token, auth.jwt_secret, algorithms=[auth.jwt_algorithm])
    user_id = claims.get("userId")
    email = claims.get("email")
    if not isinstance(user_id, int) or not isinstance(email, str):
        raise JWTError("Token payload is missing user claims")
    return TokenPayload(user_id=user_id, email=email)
