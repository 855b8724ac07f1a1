from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    username: str
    password_hash: bytes = field(repr=False)
    password_salt: bytes = field(repr=False)
    role: str = "Basic User"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class RefreshToken:
    """Server-side record of a user's single refresh token.

    ``value`` doubles as the lookup key and the bearer credential carried by
    the cookie, so it is overwritten (never appended) on rotation.
    """

    id: str
    owner_id: str
    value: str = field(repr=False)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
