from __future__ import annotations

from typing import Optional

from jwtauth.service.results import AuthErrorKind, AuthResult


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - unauthorized (401)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenExpiredError(AuthenticationError):
    """Refresh token is past its expiry; the client must log in again (401)."""
    pass


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


# shared by unknown-username and wrong-password failures
INVALID_CREDENTIALS_MESSAGE = "invalid credentials"


def error_for_result(result: AuthResult) -> ServiceError:
    """Translate a failed :class:`AuthResult` into the exception the API renders."""
    kind = result.error
    if kind is AuthErrorKind.USERNAME_TAKEN:
        return ConflictError("username not available", detail=result.detail)
    if kind is AuthErrorKind.PASSWORD_TOO_WEAK:
        return ValidationError(result.message, detail=result.detail)
    if kind in (AuthErrorKind.USER_NOT_FOUND, AuthErrorKind.INVALID_CREDENTIALS):
        return AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
    if kind is AuthErrorKind.TOKEN_EXPIRED:
        return TokenExpiredError("refresh token expired")
    if kind is AuthErrorKind.INVALID_TOKEN:
        return AuthenticationError("invalid refresh token")
    if kind is AuthErrorKind.NOT_AUTHENTICATED:
        return AuthenticationError("not authenticated")
    return ServerError("unexpected authentication outcome")


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "TokenExpiredError",
    "ConflictError",
    "ServerError",
    "INVALID_CREDENTIALS_MESSAGE",
    "error_for_result",
]
