"""Helpers shared between the memory and postgres store implementations."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TypeVar

from jwtauth.storage.models import RefreshToken, User

T = TypeVar("T", User, RefreshToken)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def safe_row_value(row: Any, key: str, default: Optional[Any] = None) -> Optional[Any]:
    """Read ``key`` from a dict-like row, tolerating missing columns."""
    if row is None:
        return default
    try:
        value = row[key]
    except (KeyError, IndexError, TypeError):
        return default
    return default if value is None else value


def _aware(value: Any) -> Any:
    # naive timestamps from the database are stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        username=row["username"],
        password_hash=bytes(row["password_hash"]),
        password_salt=bytes(row["password_salt"]),
        role=safe_row_value(row, "role", "Basic User"),
        first_name=safe_row_value(row, "first_name"),
        last_name=safe_row_value(row, "last_name"),
        email=safe_row_value(row, "email"),
        created_at=_aware(safe_row_value(row, "created_at", datetime.now(timezone.utc))),
    )


def refresh_token_from_row(row: Dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        value=row["value"],
        created_at=_aware(row["created_at"]),
        expires_at=_aware(row["expires_at"]),
    )


def snapshot(record: T) -> T:
    """Detached copy used for dirty checks at commit time."""
    return replace(record)
