from __future__ import annotations

from datetime import timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from jwtauth.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    RegisterRequest,
    UserListResponse,
    UserResponse,
)
from jwtauth.logging import get_logger
from jwtauth.service.auth import LoginGrant
from jwtauth.service.errors import error_for_result
from jwtauth.service.runtime import get_runtime
from jwtauth.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_claims(authorization: Optional[str] = Header(None)) -> Optional[Dict[str, Any]]:
    """Verified JWT claims from the ``Authorization`` header, or None."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    claims = get_runtime().issuer.decode_jwt(token)
    if claims is None:
        logger.info("jwt_rejected")
    return claims


async def get_current_user(
    claims: Optional[Dict[str, Any]] = Depends(get_claims),
) -> User:
    result = get_runtime().auth.resolve_identity(claims)
    if not result.ok:
        raise error_for_result(result)
    return result.value


def _apply_refresh_cookie(response: Response, grant: LoginGrant) -> None:
    settings = get_runtime().settings
    expires_at = grant.refresh_cookie.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    response.set_cookie(
        settings.refresh_cookie_name,
        grant.refresh_cookie.value,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite="lax",
        expires=expires_at,
        path="/",
    )


def _auth_response(grant: LoginGrant) -> AuthResponse:
    return AuthResponse(
        access_token=grant.access_token,
        token_type=grant.token_type,
        expires_at=grant.expires_at,
        user=UserResponse.from_user(grant.user),
    )


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a new user account with the default role.

    Raises:
        400: If the password does not satisfy the password policy
        409: If the username is already registered
    """
    result = get_runtime().auth.register(
        body.username,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
    )
    if not result.ok:
        raise error_for_result(result)
    return Envelope(status="ok", data=UserResponse.from_user(result.value))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Exchange username and password for a JWT and a refresh-token cookie.

    Unknown usernames and wrong passwords both answer 401 ``invalid credentials``.
    """
    result = get_runtime().auth.login(body.username, body.password)
    if not result.ok:
        raise error_for_result(result)
    _apply_refresh_cookie(response, result.value)
    return Envelope(status="ok", data=_auth_response(result.value))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(request: Request, response: Response):
    """Rotate the refresh-token cookie and issue a new JWT.

    The presented value is consumed; replaying it answers 401.
    """
    runtime = get_runtime()
    cookie_value = request.cookies.get(runtime.settings.refresh_cookie_name)
    result = runtime.auth.refresh(cookie_value)
    if not result.ok:
        raise error_for_result(result)
    _apply_refresh_cookie(response, result.value)
    return Envelope(status="ok", data=_auth_response(result.value))


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(user: User = Depends(get_current_user)):
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(user: User = Depends(get_current_user)):
    users = get_runtime().auth.list_users()
    return Envelope(
        status="ok", data=UserListResponse(items=[UserResponse.from_user(u) for u in users])
    )
