"""Registration and login.

Conflicts and bad credentials are raised as tagged ``AppError``s; the route
layer never formats error responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.adapters.db.models import User
from app.adapters.db.user_repository import UserRepository
from app.core.config import AuthSettings
from app.core.errors import AppError, ErrorKind
from app.core.security import create_access_token, hash_password, verify_password
from app.schemas.user import LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class AuthResult:
    user: User
    token: str


class AuthService:
    """Issues access tokens for new and returning users."""

    def __init__(self, repository: UserRepository, auth: AuthSettings) -> None:
        self._repository = repository
        self._auth = auth

    def _issue_token(self, user: User) -> str:
        return create_access_token(user_id=user.id, email=user.email, auth=self._auth)

    def register(self, payload: RegisterRequest) -> AuthResult:
        """Create a user account and sign them in.

        Raises:
            AppError: CONFLICT when the email is already registered.
        """
        if self._repository.get_by_email(payload.email) is not None:
            raise AppError(ErrorKind.CONFLICT, "Email already registered")

        user = self._repository.create(
            email=payload.email,
            name=payload.name,
            password_hash=hash_password(
                payload.password, rounds=self._auth.bcrypt_rounds
            ),
        )
        logger.info("auth.registered", extra={"user_id": user.id})
        return AuthResult(user=user, token=self._issue_token(user))

    def login(self, payload: LoginRequest) -> AuthResult:
        """Verify credentials and issue a token.

        Raises:
            AppError: UNAUTHORIZED for an unknown email or wrong password.
        """
        user = self._repository.get_by_email(payload.email)
        if user is None or not verify_password(payload.password, user.password_hash):
            logger.warning("auth.login_failed", extra={"reason": "invalid_credentials"})
            raise AppError(ErrorKind.UNAUTHORIZED, INVALID_CREDENTIALS_MESSAGE)

        logger.info("auth.login", extra={"user_id": user.id})
        return AuthResult(user=user, token=self._issue_token(user))
