"""Bearer token authentication.

Two entry points:
- ``get_current_user``: FastAPI dependency for protected routes. Missing or
  malformed credentials raise UNAUTHORIZED ``AppError``s; token verification
  faults from python-jose propagate unchanged to the exception handlers.
- ``resolve_optional_user_id``: best-effort identity lookup used before rate
  limiting. It never fails a request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Header, Request
from jose import JWTError

from app.core.config import AuthSettings
from app.core.errors import AppError, ErrorKind
from app.core.security import decode_access_token

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity of the caller of a protected route."""

    user_id: int
    email: str


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AppError: UNAUTHORIZED when the header is missing, uses another
            scheme, or carries an empty token.
    """
    if not authorization:
        raise AppError(ErrorKind.UNAUTHORIZED, "No token provided")
    if not authorization.startswith(BEARER_PREFIX):
        raise AppError(ErrorKind.UNAUTHORIZED, "Invalid token format. Use: Bearer <token>")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AppError(ErrorKind.UNAUTHORIZED, "Token is empty")
    return token


def resolve_optional_user_id(authorization: str | None, auth: AuthSettings) -> int | None:
    """Resolve the caller's user id if a valid bearer token is present.

    Invalid or absent credentials yield None; protected routes still reject
    them through ``get_current_user``.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        return None
    try:
        return decode_access_token(token, auth).user_id
    except JWTError as exc:
        logger.debug("auth.context_unresolved", extra={"reason": type(exc).__name__})
        return None


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedUser:
    """FastAPI dependency authenticating the caller.

    Usage:
        @router.get("/me")
        async def me(user: AuthenticatedUser = Depends(get_current_user)):
            ...

    Raises:
        AppError: UNAUTHORIZED for missing/malformed credentials.
        jose.JWTError: For tokens that fail verification.
    """
    token = extract_bearer_token(authorization)
    payload = decode_access_token(token, request.app.state.settings.auth)
    request.state.user_id = payload.user_id
    logger.info("auth.success", extra={"user_id": payload.user_id})
    return AuthenticatedUser(user_id=payload.user_id, email=payload.email)
