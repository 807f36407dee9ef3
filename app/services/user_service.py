"""Profile read/update/delete for authenticated users."""

from __future__ import annotations

import logging

from app.adapters.db.models import User
from app.adapters.db.user_repository import UserRepository
from app.core.config import AuthSettings
from app.core.errors import AppError, ErrorKind
from app.core.security import hash_password, verify_password
from app.schemas.user import ChangePasswordRequest, UpdateProfileRequest

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, repository: UserRepository, auth: AuthSettings) -> None:
        self._repository = repository
        self._auth = auth

    def get_user(self, user_id: int) -> User:
        user = self._repository.get_by_id(user_id)
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, "User not found")
        return user

    def get_profile(self, user_id: int) -> User:
        # A token can outlive its account; the repository raises NoResultFound then.
        return self._repository.get_required(user_id)

    def update_profile(self, user_id: int, payload: UpdateProfileRequest) -> User:
        """Apply the provided fields.

        A duplicate email is left to the unique constraint, which surfaces as
        an IntegrityError (409 via the exception handlers).
        """
        changes = payload.model_dump(exclude_none=True)
        if not changes:
            raise AppError(ErrorKind.BAD_REQUEST, "No fields to update")
        user = self._repository.get_required(user_id)
        updated = self._repository.update(user, **changes)
        logger.info("user.updated", extra={"user_id": user_id, "fields": sorted(changes)})
        return updated

    def change_password(self, user_id: int, payload: ChangePasswordRequest) -> None:
        user = self._repository.get_required(user_id)
        if not verify_password(payload.old_password, user.password_hash):
            raise AppError(ErrorKind.BAD_REQUEST, "Old password is incorrect")
        self._repository.update(
            user,
            password_hash=hash_password(
                payload.new_password, rounds=self._auth.bcrypt_rounds
            ),
        )
        logger.info("user.password_changed", extra={"user_id": user_id})

    def delete_account(self, user_id: int) -> None:
        user = self._repository.get_required(user_id)
        self._repository.delete(user)
        logger.info("user.deleted", extra={"user_id": user_id})
