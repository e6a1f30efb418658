from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from reelscore.logging import get_logger
from reelscore.storage.common import normalize_user_patch
from reelscore.storage.errors import ConstraintViolation
from reelscore.storage.models import RefreshToken, Role, User, utcnow

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'USER',
        verified BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        id UUID PRIMARY KEY,
        token TEXT NOT NULL UNIQUE,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS refresh_token_expires_idx ON refresh_token (expires_at)",
)


def _user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role(row.get("role", Role.USER.value)),
        verified=bool(row.get("verified", False)),
        created_at=row.get("created_at") or utcnow(),
        updated_at=row.get("updated_at") or utcnow(),
    )


def _token_from_row(row: Dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        id=str(row["id"]),
        token=row["token"],
        user_id=str(row["user_id"]),
        expires_at=row["expires_at"],
    )


class PostgresStore:
    """Postgres-backed users and refresh tokens over an async connection pool."""

    def __init__(self, dsn: str, *, pool: AsyncConnectionPool | None = None) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = pool or AsyncConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )
        self.users = PostgresUserDirectory(self)
        self.sessions = PostgresSessionStore(self)

    async def open(self) -> None:
        await self.pool.open()
        await self.ensure_schema()

    async def close(self) -> None:
        await self.pool.close()

    def _connect(self):
        return self.pool.connection()

    async def ensure_schema(self) -> None:
        """Create the ``app_user`` and ``refresh_token`` tables if they are missing."""

        async with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                await conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    async def fetch_one(self, query: Any, params: tuple) -> Optional[Dict[str, Any]]:
        async with self._connect() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchone()

    async def rowcount(self, query: Any, params: tuple) -> int:
        async with self._connect() as conn:
            cur = await conn.execute(query, params)
            return cur.rowcount

    async def taken_fields(
        self,
        username: Optional[str],
        email: Optional[str],
        *,
        exclude_id: str | None = None,
    ) -> List[str]:
        row = await self.fetch_one(
            """
            SELECT
                bool_or(username = %s) AS username_taken,
                bool_or(email = %s) AS email_taken
            FROM app_user
            WHERE (username = %s OR email = %s)
              AND (%s::uuid IS NULL OR id <> %s::uuid)
            """,
            (username, email, username, email, exclude_id, exclude_id),
        )
        fields: List[str] = []
        if row and row.get("username_taken"):
            fields.append("username")
        if row and row.get("email_taken"):
            fields.append("email")
        return fields


class PostgresUserDirectory:
    def __init__(self, store: PostgresStore) -> None:
        self._store = store

    async def find_by_username(self, username: str) -> Optional[User]:
        row = await self._store.fetch_one(
            "SELECT * FROM app_user WHERE username = %s", (username,)
        )
        return _user_from_row(row) if row else None

    async def find_by_email(self, email: str) -> Optional[User]:
        row = await self._store.fetch_one(
            "SELECT * FROM app_user WHERE email = %s", (email,)
        )
        return _user_from_row(row) if row else None

    async def find_by_id(self, user_id: str) -> Optional[User]:
        row = await self._store.fetch_one(
            "SELECT * FROM app_user WHERE id = %s", (user_id,)
        )
        return _user_from_row(row) if row else None

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            row = await self._store.fetch_one(
                """
                INSERT INTO app_user (id, username, email, password_hash, role, verified)
                VALUES (%s, %s, %s, %s, %s, false)
                RETURNING *
                """,
                (user_id, username, email, password_hash, role.value),
            )
        except errors.UniqueViolation:
            fields = await self._store.taken_fields(username, email)
            raise ConstraintViolation(
                "account already exists", {"fields": fields or ["username", "email"]}
            )
        return _user_from_row(row)

    async def set_verified(self, user_id: str) -> Optional[User]:
        row = await self._store.fetch_one(
            """
            UPDATE app_user SET verified = true, updated_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (user_id,),
        )
        return _user_from_row(row) if row else None

    async def update_fields(
        self, username: str, patch: Dict[str, Any]
    ) -> Optional[User]:
        changes = normalize_user_patch(patch)
        if not changes:
            return await self.find_by_username(username)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in changes
        )
        query = sql.SQL(
            "UPDATE app_user SET {}, updated_at = now() WHERE username = %s RETURNING *"
        ).format(assignments)
        try:
            row = await self._store.fetch_one(query, (*changes.values(), username))
        except errors.UniqueViolation:
            current = await self.find_by_username(username)
            fields = await self._store.taken_fields(
                changes.get("username"),
                changes.get("email"),
                exclude_id=current.id if current else None,
            )
            raise ConstraintViolation("account already exists", {"fields": fields})
        return _user_from_row(row) if row else None

    async def delete_by_username(self, username: str) -> bool:
        deleted = await self._store.rowcount(
            "DELETE FROM app_user WHERE username = %s", (username,)
        )
        return deleted > 0

    async def delete_unverified_before(self, cutoff: datetime) -> int:
        return await self._store.rowcount(
            "DELETE FROM app_user WHERE verified = false AND created_at < %s",
            (cutoff,),
        )


class PostgresSessionStore:
    def __init__(self, store: PostgresStore) -> None:
        self._store = store

    async def create(
        self, user_id: str, token: str, expires_at: datetime
    ) -> RefreshToken:
        try:
            row = await self._store.fetch_one(
                """
                INSERT INTO refresh_token (id, token, user_id, expires_at)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (str(uuid.uuid4()), token, user_id, expires_at),
            )
        except errors.UniqueViolation:
            raise ConstraintViolation("token already exists", {"fields": ["token"]})
        return _token_from_row(row)

    async def find_by_token(self, token: str) -> Optional[RefreshToken]:
        row = await self._store.fetch_one(
            "SELECT * FROM refresh_token WHERE token = %s", (token,)
        )
        return _token_from_row(row) if row else None

    async def rotate(
        self, old_token: str, new_token: str, new_expires_at: datetime
    ) -> Optional[RefreshToken]:
        # Single conditional UPDATE: of two concurrent rotations of the same
        # value, only one matches the WHERE clause.
        row = await self._store.fetch_one(
            """
            UPDATE refresh_token SET token = %s, expires_at = %s
            WHERE token = %s AND expires_at >= %s
            RETURNING *
            """,
            (new_token, new_expires_at, old_token, utcnow()),
        )
        return _token_from_row(row) if row else None

    async def delete_all_by_token(self, token: str) -> int:
        return await self._store.rowcount(
            "DELETE FROM refresh_token WHERE token = %s", (token,)
        )

    async def delete_expired(self, now: datetime) -> int:
        return await self._store.rowcount(
            "DELETE FROM refresh_token WHERE expires_at < %s", (now,)
        )
