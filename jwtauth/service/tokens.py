from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jwtauth.config import Settings
from jwtauth.logging import get_logger
from jwtauth.storage.models import User

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
REFRESH_TOKEN_BYTES = 64


@dataclass(frozen=True)
class IssuedJwt:
    token: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedRefreshToken:
    value: str
    created_at: datetime
    expires_at: datetime


class TokenIssuer:
    """Signs identity JWTs and mints opaque refresh-token values.

    The signing secret and both lifetimes are captured from ``settings`` at
    construction time.
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.jwt_secret.encode("utf-8")
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.jwt_ttl = timedelta(minutes=settings.jwt_ttl_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_ttl_days)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def issue_jwt(self, user: User, *, now: Optional[datetime] = None) -> IssuedJwt:
        issued_at = (now or self._now()).replace(microsecond=0)
        expires_at = issued_at + self.jwt_ttl
        header = {"alg": JWT_ALGORITHM, "typ": "JWT"}
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": user.id,
            "name": user.username,
            "role": user.role,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        token = f"{signing_input}.{self._sign(signing_input)}"
        return IssuedJwt(token=token, issued_at=issued_at, expires_at=expires_at)

    def decode_jwt(
        self, token: str, *, now: Optional[datetime] = None
    ) -> Optional[dict[str, Any]]:
        """Verify ``token`` and return its claims, or None when it is not acceptable."""
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # pin the algorithm so a forged header cannot downgrade verification
        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != JWT_ALGORITHM:
            logger.warning("jwt_invalid_algorithm")
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        # compare bytes; str compare_digest raises on non-ASCII input
        if not hmac.compare_digest(
            expected_sig.encode(), sig_b64.encode("utf-8", "surrogatepass")
        ):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            return None
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return None
        if exp_ts <= (now or self._now()).timestamp():
            return None
        return payload

    def issue_refresh_token(
        self, owner_id: str, *, now: Optional[datetime] = None
    ) -> IssuedRefreshToken:
        created_at = now or self._now()
        logger.debug("refresh_token_issued", owner_id=owner_id)
        return IssuedRefreshToken(
            value=secrets.token_urlsafe(REFRESH_TOKEN_BYTES),
            created_at=created_at,
            expires_at=created_at + self.refresh_ttl,
        )
