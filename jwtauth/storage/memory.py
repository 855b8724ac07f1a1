from __future__ import annotations

import contextlib
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from jwtauth.logging import get_logger
from jwtauth.storage.common import generate_uuid, snapshot
from jwtauth.storage.errors import ConcurrentModification, ConstraintViolation
from jwtauth.storage.models import RefreshToken, User


class MemoryStore:
    """In-process backing store for tests and single-node development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        # RLock so commit can call the lookup helpers below
        self._data_lock = threading.RLock()

    @contextlib.contextmanager
    def session(self) -> Iterator["MemoryUnitOfWork"]:
        uow = MemoryUnitOfWork(self)
        try:
            yield uow
        finally:
            uow.rollback()

    def verify_connection(self) -> None:
        return None

    def close(self) -> None:
        return None

    # committed-state lookups, always called under _data_lock
    def _find_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.username == username), None)

    def _find_token_by_owner(self, owner_id: str) -> Optional[RefreshToken]:
        return next(
            (t for t in self.refresh_tokens.values() if t.owner_id == owner_id), None
        )

    def _find_token_by_value(self, value: str) -> Optional[RefreshToken]:
        return next((t for t in self.refresh_tokens.values() if t.value == value), None)


class MemoryUnitOfWork:
    """Request-scoped view over a :class:`MemoryStore`.

    Rows handed out are private copies tracked in an identity map; creations
    are staged. Nothing becomes visible to other units of work until
    :meth:`commit`, which validates every staged change before applying any.
    """

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._users: Dict[str, User] = {}
        self._tokens: Dict[str, RefreshToken] = {}
        self._snapshots: Dict[str, User | RefreshToken] = {}
        self._new_users: List[User] = []
        self._new_tokens: List[RefreshToken] = []

    def _track(self, record: Optional[User | RefreshToken]):
        if record is None:
            return None
        identity = self._users if isinstance(record, User) else self._tokens
        tracked = identity.get(record.id)
        if tracked is None:
            tracked = replace(record)
            identity[record.id] = tracked
            self._snapshots[record.id] = snapshot(record)
        return tracked

    # users
    def get_user(self, user_id: str) -> Optional[User]:
        pending = next((u for u in self._new_users if u.id == user_id), None)
        if pending:
            return pending
        with self._store._data_lock:
            return self._track(self._store.users.get(user_id))

    def get_user_by_username(self, username: str) -> Optional[User]:
        pending = next((u for u in self._new_users if u.username == username), None)
        if pending:
            return pending
        with self._store._data_lock:
            return self._track(self._store._find_user_by_username(username))

    def list_users(self) -> List[User]:
        with self._store._data_lock:
            committed = [self._track(u) for u in self._store.users.values()]
        return sorted(committed + list(self._new_users), key=lambda u: u.created_at)

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
    ) -> User:
        if self.get_user_by_username(username) is not None:
            raise ConstraintViolation("username already exists", {"field": "username"})
        user = User(
            id=generate_uuid(),
            username=username,
            password_hash=password_hash,
            password_salt=password_salt,
            role=role,
            first_name=first_name,
            last_name=last_name,
            email=email,
        )
        self._new_users.append(user)
        return user

    # refresh tokens
    def get_refresh_token_by_owner(self, owner_id: str) -> Optional[RefreshToken]:
        pending = next((t for t in self._new_tokens if t.owner_id == owner_id), None)
        if pending:
            return pending
        with self._store._data_lock:
            return self._track(self._store._find_token_by_owner(owner_id))

    def get_refresh_token_by_value(self, value: str) -> Optional[RefreshToken]:
        pending = next((t for t in self._new_tokens if t.value == value), None)
        if pending:
            return pending
        tracked = next((t for t in self._tokens.values() if t.value == value), None)
        if tracked:
            return tracked
        with self._store._data_lock:
            found = self._store._find_token_by_value(value)
            if found is not None and found.id in self._tokens:
                # rotated inside this unit of work; the stale value no longer resolves
                return None
            return self._track(found)

    def create_refresh_token(
        self, owner_id: str, value: str, created_at: datetime, expires_at: datetime
    ) -> RefreshToken:
        if self.get_refresh_token_by_owner(owner_id) is not None:
            raise ConstraintViolation(
                "refresh token already exists for owner", {"owner_id": owner_id}
            )
        token = RefreshToken(
            id=generate_uuid(),
            owner_id=owner_id,
            value=value,
            created_at=created_at,
            expires_at=expires_at,
        )
        self._new_tokens.append(token)
        return token

    def commit(self) -> None:
        store = self._store
        with store._data_lock:
            self._validate_pending()
            for user in self._new_users:
                store.users[user.id] = replace(user)
            for token in self._new_tokens:
                store.refresh_tokens[token.id] = replace(token)
            for record_id, tracked in list(self._users.items()) + list(self._tokens.items()):
                if tracked != self._snapshots[record_id]:
                    table = store.users if isinstance(tracked, User) else store.refresh_tokens
                    table[record_id] = replace(tracked)
            # staged rows are now committed; keep tracking them
            for record in [*self._new_users, *self._new_tokens]:
                identity = self._users if isinstance(record, User) else self._tokens
                identity[record.id] = record
            self._new_users = []
            self._new_tokens = []
            self._snapshots = {
                record_id: snapshot(record)
                for record_id, record in [*self._users.items(), *self._tokens.items()]
            }

    def _validate_pending(self) -> None:
        store = self._store
        for user in self._new_users:
            if store._find_user_by_username(user.username) is not None:
                raise ConstraintViolation("username already exists", {"field": "username"})
        for token in self._new_tokens:
            if token.owner_id not in store.users and not any(
                u.id == token.owner_id for u in self._new_users
            ):
                raise ConstraintViolation("refresh token owner missing", {"owner_id": token.owner_id})
            if store._find_token_by_owner(token.owner_id) is not None:
                raise ConstraintViolation(
                    "refresh token already exists for owner", {"owner_id": token.owner_id}
                )
        for token_id, tracked in self._tokens.items():
            original = self._snapshots[token_id]
            if tracked == original:
                continue
            current = store.refresh_tokens.get(token_id)
            # optimistic check: the row must still hold the value this unit read
            if current is None or current.value != original.value:
                store.logger.warning("refresh_token_concurrent_rotation", owner_id=tracked.owner_id)
                raise ConcurrentModification(
                    "refresh token was rotated concurrently", {"owner_id": tracked.owner_id}
                )
            clash = store._find_token_by_value(tracked.value)
            if clash is not None and clash.id != token_id:
                raise ConstraintViolation("refresh token value collision", {"field": "value"})

    def rollback(self) -> None:
        self._users.clear()
        self._tokens.clear()
        self._snapshots.clear()
        self._new_users = []
        self._new_tokens = []
