"""Request/response schemas for users and authentication.

Validation messages are client-facing; custom validators raise ``ValueError``
with the exact text returned in ``details``.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 8


def normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email format")
    return value


def normalize_name(value: str) -> str:
    value = value.strip()
    if len(value) < NAME_MIN_LENGTH:
        raise ValueError(f"Name must be at least {NAME_MIN_LENGTH} characters")
    if len(value) > NAME_MAX_LENGTH:
        raise ValueError(f"Name must be less than {NAME_MAX_LENGTH} characters")
    return value


def check_password_strength(value: str) -> str:
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", value):
        raise ValueError("Password must contain at least one special character")
    return value


EmailField = Annotated[str, AfterValidator(normalize_email)]
NameField = Annotated[str, AfterValidator(normalize_name)]
PasswordField = Annotated[str, AfterValidator(check_password_strength)]


class RegisterRequest(BaseModel):
    email: EmailField
    name: NameField
    password: PasswordField


class LoginRequest(BaseModel):
    email: EmailField
    password: str = Field(..., min_length=1)


class UpdateProfileRequest(BaseModel):
    """Partial profile update; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    email: EmailField | None = None
    name: NameField | None = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_password: str = Field(..., alias="oldPassword", min_length=1)
    new_password: PasswordField = Field(..., alias="newPassword")


class UserResponse(BaseModel):
    """Public user representation (never includes the password hash)."""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    email: str
    name: str
    created_at: datetime
