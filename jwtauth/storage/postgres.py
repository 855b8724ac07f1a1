from __future__ import annotations

import contextlib
import uuid
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from psycopg import Connection, errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from jwtauth.logging import get_logger
from jwtauth.storage.common import (
    generate_uuid,
    refresh_token_from_row,
    snapshot,
    user_from_row,
)
from jwtauth.storage.errors import ConcurrentModification, ConstraintViolation
from jwtauth.storage.models import RefreshToken, User

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        password_hash BYTEA NOT NULL,
        password_salt BYTEA NOT NULL,
        role TEXT NOT NULL DEFAULT 'Basic User',
        first_name TEXT,
        last_name TEXT,
        email TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        id UUID PRIMARY KEY,
        owner_id UUID NOT NULL UNIQUE REFERENCES app_user(id) ON DELETE CASCADE,
        value TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
)


class PostgresStore:
    """Postgres-backed user and refresh-token persistence."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` and ``refresh_token`` tables if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextlib.contextmanager
    def session(self) -> Iterator["PostgresUnitOfWork"]:
        with self._connect() as conn:
            uow = PostgresUnitOfWork(conn)
            try:
                yield uow
            finally:
                # the pool commits on clean exit, so anything left must be discarded here
                uow.rollback()

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()


class PostgresUnitOfWork:
    """One pooled connection and transaction per request.

    Inserts run inside the open transaction; rows fetched through this unit
    are tracked so in-place mutations (refresh-token rotation) are flushed by
    :meth:`commit` as conditional updates.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn
        self.logger = get_logger(__name__)
        self._users: Dict[str, User] = {}
        self._tokens: Dict[str, RefreshToken] = {}
        self._snapshots: Dict[str, Any] = {}

    def _track_user(self, row: Optional[dict]) -> Optional[User]:
        if not row:
            return None
        user_id = str(row["id"])
        if user_id not in self._users:
            user = user_from_row(row)
            self._users[user_id] = user
            self._snapshots[user_id] = snapshot(user)
        return self._users[user_id]

    def _track_token(self, row: Optional[dict]) -> Optional[RefreshToken]:
        if not row:
            return None
        token_id = str(row["id"])
        if token_id not in self._tokens:
            token = refresh_token_from_row(row)
            self._tokens[token_id] = token
            self._snapshots[token_id] = snapshot(token)
        return self._tokens[token_id]

    # users
    def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            # not a UUID, so it cannot name a user
            return None
        row = self.conn.execute(
            "SELECT * FROM app_user WHERE id = %s", (user_id,)
        ).fetchone()
        return self._track_user(row)

    def get_user_by_username(self, username: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT * FROM app_user WHERE username = %s", (username,)
        ).fetchone()
        return self._track_user(row)

    def list_users(self) -> List[User]:
        rows = self.conn.execute(
            "SELECT * FROM app_user ORDER BY created_at ASC"
        ).fetchall()
        return [self._track_user(row) for row in rows]

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
        try:
            row = self.conn.execute(
                """
                INSERT INTO app_user (id, username, password_hash, password_salt, role, first_name, last_name, email)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    generate_uuid(),
                    username,
                    password_hash,
                    password_salt,
                    role,
                    first_name,
                    last_name,
                    email,
                ),
            ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("username already exists", {"field": "username"})
        return self._track_user(row)

    # refresh tokens
    def get_refresh_token_by_owner(self, owner_id: str) -> Optional[RefreshToken]:
        row = self.conn.execute(
            "SELECT * FROM refresh_token WHERE owner_id = %s", (owner_id,)
        ).fetchone()
        return self._track_token(row)

    def get_refresh_token_by_value(self, value: str) -> Optional[RefreshToken]:
        row = self.conn.execute(
            "SELECT * FROM refresh_token WHERE value = %s", (value,)
        ).fetchone()
        token = self._track_token(row)
        if token is not None and token.value != value:
            # rotated inside this unit of work
            return None
        return token

    def create_refresh_token(
        self, owner_id: str, value: str, created_at: datetime, expires_at: datetime
    ) -> RefreshToken:
        try:
            row = self.conn.execute(
                """
                INSERT INTO refresh_token (id, owner_id, value, created_at, expires_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (generate_uuid(), owner_id, value, created_at, expires_at),
            ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "refresh token already exists for owner", {"owner_id": owner_id}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("refresh token owner missing", {"owner_id": owner_id})
        return self._track_token(row)

    def commit(self) -> None:
        for token_id, token in self._tokens.items():
            original = self._snapshots[token_id]
            if token == original:
                continue
            try:
                cur = self.conn.execute(
                    """
                    UPDATE refresh_token
                    SET value = %s, created_at = %s, expires_at = %s
                    WHERE id = %s AND value = %s
                    """,
                    (token.value, token.created_at, token.expires_at, token_id, original.value),
                )
            except errors.UniqueViolation:
                raise ConstraintViolation("refresh token value collision", {"field": "value"})
            if cur.rowcount == 0:
                self.logger.warning("refresh_token_concurrent_rotation", owner_id=token.owner_id)
                raise ConcurrentModification(
                    "refresh token was rotated concurrently", {"owner_id": token.owner_id}
                )
        for user_id, user in self._users.items():
            if user == self._snapshots[user_id]:
                continue
            self.conn.execute(
                """
                UPDATE app_user
                SET role = %s, first_name = %s, last_name = %s, email = %s,
                    password_hash = %s, password_salt = %s
                WHERE id = %s
                """,
                (
                    user.role,
                    user.first_name,
                    user.last_name,
                    user.email,
                    user.password_hash,
                    user.password_salt,
                    user_id,
                ),
            )
        self.conn.commit()
        self._snapshots = {
            record_id: snapshot(record)
            for record_id, record in [*self._users.items(), *self._tokens.items()]
        }

    def rollback(self) -> None:
        self.conn.rollback()
        self._users.clear()
        self._tokens.clear()
        self._snapshots.clear()
