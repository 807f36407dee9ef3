from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.adapters.db.session import get_db
from app.adapters.db.user_repository import UserRepository
from app.core.validation import json_body_openapi, validated_body
from app.schemas.user import LoginRequest, RegisterRequest, UserResponse
from app.services.auth_service import AuthResult, AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])


def _auth_service(request: Request, db: Session = Depends(get_db)) -> AuthService:
    return AuthService(UserRepository(db), request.app.state.settings.auth)


def _auth_payload(result: AuthResult) -> dict[str, Any]:
    return {
        "success": True,
        "data": {
            "user": UserResponse.model_validate(result.user).model_dump(by_alias=True, mode="json"),
            "token": result.token,
        },
    }


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    openapi_extra=json_body_openapi(RegisterRequest),
)
def register(
    payload: RegisterRequest = Depends(validated_body(RegisterRequest)),
    service: AuthService = Depends(_auth_service),
) -> dict[str, Any]:
    """Create an account and return the user with an access token.

    Raises:
        AppError: 422 for invalid input, 409 when the email is taken.
    """
    return _auth_payload(service.register(payload))


@router.post("/login", openapi_extra=json_body_openapi(LoginRequest))
def login(
    payload: LoginRequest = Depends(validated_body(LoginRequest)),
    service: AuthService = Depends(_auth_service),
) -> dict[str, Any]:
    """Exchange email and password for an access token.

    Successful logins are refunded by the auth rate limit policy; failed ones
    count against it.
    """
    return _auth_payload(service.login(payload))
