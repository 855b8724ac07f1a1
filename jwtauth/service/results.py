from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class AuthErrorKind(str, Enum):
    """Expected, terminal failures of the authentication operations."""

    USERNAME_TAKEN = "username_taken"
    PASSWORD_TOO_WEAK = "password_too_weak"
    USER_NOT_FOUND = "user_not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    NOT_AUTHENTICATED = "not_authenticated"


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """Outcome of an auth operation: either ``value`` or an ``error`` kind."""

    value: Optional[T] = None
    error: Optional[AuthErrorKind] = None
    message: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "AuthResult[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls, kind: AuthErrorKind, message: str, detail: Optional[Dict[str, Any]] = None
    ) -> "AuthResult[T]":
        return cls(error=kind, message=message, detail=detail or {})
