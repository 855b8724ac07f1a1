from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, List, Mapping, Optional, Protocol

from jwtauth.config import Settings
from jwtauth.logging import get_logger
from jwtauth.service.passwords import PasswordHasher, PasswordPolicy
from jwtauth.service.results import AuthErrorKind, AuthResult
from jwtauth.service.tokens import IssuedJwt, TokenIssuer
from jwtauth.storage.models import RefreshToken, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def create_user(
        self,
        username: str,
        password_hash: bytes,
        password_salt: bytes,
        *,
        role: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User: ...

    def list_users(self) -> List[User]: ...


class RefreshTokenStore(Protocol):
    def get_refresh_token_by_owner(self, owner_id: str) -> Optional[RefreshToken]: ...

    def get_refresh_token_by_value(self, value: str) -> Optional[RefreshToken]: ...

    def create_refresh_token(
        self, owner_id: str, value: str, created_at: datetime, expires_at: datetime
    ) -> RefreshToken: ...


class UnitOfWork(UserStore, RefreshTokenStore, Protocol):
    """Request-scoped store view; ``commit`` flushes creations and tracked edits."""

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class AuthStore(Protocol):
    def session(self) -> ContextManager[UnitOfWork]: ...


@dataclass(frozen=True)
class RefreshCookie:
    """What the HTTP layer writes into the ``refreshToken`` cookie."""

    value: str
    expires_at: datetime


@dataclass(frozen=True)
class LoginGrant:
    user: User
    access_token: str
    expires_at: datetime
    refresh_cookie: RefreshCookie
    token_type: str = "bearer"


class AuthService:
    """Registration, login, refresh-token rotation and identity resolution.

    Every operation opens one unit of work, finishes all validation, then does
    at most one commit. Expected failures come back as :class:`AuthResult`
    values; storage failures propagate as exceptions.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        policy: Optional[PasswordPolicy] = None,
        issuer: Optional[TokenIssuer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.hasher = hasher or PasswordHasher()
        self.policy = policy or PasswordPolicy()
        self.issuer = issuer or TokenIssuer(settings)
        self._clock = clock
        self.logger = logger
        # verified against when the username is unknown so both login
        # failures cost one HMAC computation
        self._decoy_digest, self._decoy_salt = self.hasher.hash(secrets.token_urlsafe(16))

    def _now(self) -> datetime:
        """Timezone-aware UTC helper to avoid naive datetime usage."""

        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    def register(
        self,
        username: str,
        password: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> AuthResult[User]:
        with self.store.session() as uow:
            if uow.get_user_by_username(username) is not None:
                self.logger.info("registration_rejected", reason="username_taken")
                return AuthResult.failure(
                    AuthErrorKind.USERNAME_TAKEN,
                    "provided username is not available",
                    {"field": "username"},
                )
            check = self.policy.validate(password)
            if not check.ok:
                self.logger.info(
                    "registration_rejected",
                    reason="password_too_weak",
                    violations=list(check.violations),
                )
                return AuthResult.failure(
                    AuthErrorKind.PASSWORD_TOO_WEAK,
                    self.policy.message,
                    {"violations": list(check.violations)},
                )
            digest, salt = self.hasher.hash(password)
            user = uow.create_user(
                username,
                digest,
                salt,
                role=self.settings.default_role,
                first_name=first_name,
                last_name=last_name,
                email=email,
            )
            uow.commit()
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return AuthResult.success(user)

    def login(self, username: str, password: str) -> AuthResult[LoginGrant]:
        with self.store.session() as uow:
            user = uow.get_user_by_username(username)
            if user is None:
                self.hasher.verify(password, self._decoy_digest, self._decoy_salt)
                self.logger.info("login_failed", reason="user_not_found")
                return AuthResult.failure(
                    AuthErrorKind.USER_NOT_FOUND,
                    "user with provided username does not exist",
                )
            if not self.hasher.verify(password, user.password_hash, user.password_salt):
                self.logger.info("login_failed", reason="invalid_credentials", user_id=user.id)
                return AuthResult.failure(
                    AuthErrorKind.INVALID_CREDENTIALS,
                    "password does not match the username",
                )
            now = self._now()
            token = self._rotate_or_create(uow, user.id, now)
            uow.commit()
        jwt = self.issuer.issue_jwt(user, now=now)
        self.logger.info("login_succeeded", user_id=user.id)
        return AuthResult.success(self._grant(user, jwt, token))

    def refresh(self, refresh_token_value: Optional[str]) -> AuthResult[LoginGrant]:
        if not refresh_token_value:
            return AuthResult.failure(
                AuthErrorKind.INVALID_TOKEN, "refresh token could not be found in cookie"
            )
        with self.store.session() as uow:
            token = uow.get_refresh_token_by_value(refresh_token_value)
            if token is None:
                self.logger.info("refresh_rejected", reason="unknown_token")
                return AuthResult.failure(AuthErrorKind.INVALID_TOKEN, "invalid refresh token")
            now = self._now()
            if token.is_expired(now):
                self.logger.info(
                    "refresh_token_expired",
                    owner_id=token.owner_id,
                    expired_at=token.expires_at.isoformat(),
                )
                return AuthResult.failure(AuthErrorKind.TOKEN_EXPIRED, "refresh token expired")
            owner = uow.get_user(token.owner_id)
            if owner is None:
                self.logger.warning("refresh_token_orphaned", owner_id=token.owner_id)
                return AuthResult.failure(AuthErrorKind.INVALID_TOKEN, "invalid refresh token")
            self._rotate(token, now)
            uow.commit()
        jwt = self.issuer.issue_jwt(owner, now=now)
        self.logger.info("refresh_token_rotated", user_id=owner.id)
        return AuthResult.success(self._grant(owner, jwt, token))

    def resolve_identity(self, claims: Optional[Mapping[str, Any]]) -> AuthResult[User]:
        """Map already-verified JWT claims to the stored user they name."""
        subject = (claims or {}).get("sub")
        if not subject:
            return AuthResult.failure(
                AuthErrorKind.NOT_AUTHENTICATED, "user is not authenticated"
            )
        with self.store.session() as uow:
            user = uow.get_user(str(subject))
        if user is None:
            self.logger.info("identity_unresolved", user_id=str(subject))
            return AuthResult.failure(
                AuthErrorKind.USER_NOT_FOUND, "user with provided identifier does not exist"
            )
        return AuthResult.success(user)

    def list_users(self) -> List[User]:
        with self.store.session() as uow:
            return uow.list_users()

    def _rotate_or_create(self, uow: UnitOfWork, owner_id: str, now: datetime) -> RefreshToken:
        token = uow.get_refresh_token_by_owner(owner_id)
        if token is not None:
            self._rotate(token, now)
            return token
        issued = self.issuer.issue_refresh_token(owner_id, now=now)
        return uow.create_refresh_token(
            owner_id, issued.value, issued.created_at, issued.expires_at
        )

    def _rotate(self, token: RefreshToken, now: datetime) -> None:
        issued = self.issuer.issue_refresh_token(token.owner_id, now=now)
        token.value = issued.value
        token.created_at = issued.created_at
        token.expires_at = issued.expires_at

    @staticmethod
    def _grant(user: User, jwt: IssuedJwt, token: RefreshToken) -> LoginGrant:
        return LoginGrant(
            user=user,
            access_token=jwt.token,
            expires_at=jwt.expires_at,
            refresh_cookie=RefreshCookie(value=token.value, expires_at=token.expires_at),
        )
