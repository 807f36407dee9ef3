from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.adapters.db.models import User
from app.adapters.db.session import get_db
from app.adapters.db.user_repository import UserRepository
from app.core.auth import AuthenticatedUser, get_current_user
from app.core.validation import json_body_openapi, validated_body
from app.schemas.user import ChangePasswordRequest, UpdateProfileRequest, UserResponse
from app.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])


def _user_service(request: Request, db: Session = Depends(get_db)) -> UserService:
    return UserService(UserRepository(db), request.app.state.settings.auth)


def _user_payload(user: User) -> dict[str, Any]:
    return {
        "success": True,
        "data": UserResponse.model_validate(user).model_dump(by_alias=True, mode="json"),
    }


@router.get("/me")
def get_me(
    current: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(_user_service),
) -> dict[str, Any]:
    return _user_payload(service.get_profile(current.user_id))


@router.patch("/me", openapi_extra=json_body_openapi(UpdateProfileRequest))
def update_me(
    current: AuthenticatedUser = Depends(get_current_user),
    payload: UpdateProfileRequest = Depends(validated_body(UpdateProfileRequest)),
    service: UserService = Depends(_user_service),
) -> dict[str, Any]:
    """Update name and/or email of the current user."""
    return _user_payload(service.update_profile(current.user_id, payload))


@router.put("/me/password", openapi_extra=json_body_openapi(ChangePasswordRequest))
def change_password(
    current: AuthenticatedUser = Depends(get_current_user),
    payload: ChangePasswordRequest = Depends(validated_body(ChangePasswordRequest)),
    service: UserService = Depends(_user_service),
) -> dict[str, Any]:
    service.change_password(current.user_id, payload)
    return {"success": True, "message": "Password changed successfully"}


@router.delete("/me")
def delete_me(
    current: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(_user_service),
) -> dict[str, Any]:
    service.delete_account(current.user_id)
    return {"success": True, "message": "User deleted successfully"}


@router.get("/{user_id}")
def get_user(
    user_id: int,
    _: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(_user_service),
) -> dict[str, Any]:
    return _user_payload(service.get_user(user_id))
