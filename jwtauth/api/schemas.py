from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from jwtauth.storage.models import User

MAX_USERNAME_LENGTH = 64
MAX_PASSWORD_LENGTH = 128
MAX_NAME_LENGTH = 128

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then apply NFKC."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(
        c for c in value if c not in zero_width and c not in bidi_overrides
    )
    return unicodedata.normalize("NFKC", cleaned)


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def normalize_username(value: str) -> str:
    """Canonical form stored and looked up for a username."""
    normalized = _normalize_unicode(value.strip())
    if not normalized:
        raise ValueError("username must not be empty")
    if len(normalized) > MAX_USERNAME_LENGTH:
        raise ValueError(f"username must be at most {MAX_USERNAME_LENGTH} characters")
    return normalized


class RegisterRequest(BaseModel):
    # strength rules are checked by PasswordPolicy in the service
    username: str
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    first_name: Optional[str] = Field(default=None, max_length=MAX_NAME_LENGTH)
    last_name: Optional[str] = Field(default=None, max_length=MAX_NAME_LENGTH)
    email: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _validate_register_username(cls, value: str) -> str:
        return normalize_username(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value)


class LoginRequest(BaseModel):
    username: str
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def _validate_login_username(cls, value: str) -> str:
        return normalize_username(value)


class UserResponse(BaseModel):
    id: str
    username: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            created_at=user.created_at,
        )


class UserListResponse(BaseModel):
    items: List[UserResponse]


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse
