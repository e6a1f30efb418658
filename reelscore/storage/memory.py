from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Tuple

from reelscore.storage.common import normalize_user_patch
from reelscore.storage.errors import ConstraintViolation
from reelscore.storage.models import RefreshToken, Role, User, utcnow


class MemoryStore:
    """In-process backing store for users and refresh tokens.

    Used by tests and local development. ``users`` and ``sessions`` expose the
    directory and session-store contracts over the same guarded state so that
    deleting a user drops that user's refresh tokens, as the relational
    schema's cascade does.
    """

    def __init__(self) -> None:
        self.user_rows: Dict[str, User] = {}
        self.token_rows: Dict[str, RefreshToken] = {}
        self._lock = asyncio.Lock()
        self.users = MemoryUserDirectory(self)
        self.sessions = MemorySessionStore(self)

    def _taken_fields(
        self, username: Optional[str], email: Optional[str], *, exclude_id: str | None = None
    ) -> List[str]:
        fields: List[str] = []
        for user in self.user_rows.values():
            if user.id == exclude_id:
                continue
            if username is not None and user.username == username and "username" not in fields:
                fields.append("username")
            if email is not None and user.email == email and "email" not in fields:
                fields.append("email")
        return fields

    def _drop_tokens_for(self, user_ids: set[str]) -> None:
        for token, row in list(self.token_rows.items()):
            if row.user_id in user_ids:
                del self.token_rows[token]


class MemoryUserDirectory:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def find_by_username(self, username: str) -> Optional[User]:
        async with self._store._lock:
            return next(
                (u for u in self._store.user_rows.values() if u.username == username),
                None,
            )

    async def find_by_email(self, email: str) -> Optional[User]:
        async with self._store._lock:
            return next(
                (u for u in self._store.user_rows.values() if u.email == email), None
            )

    async def find_by_id(self, user_id: str) -> Optional[User]:
        async with self._store._lock:
            return self._store.user_rows.get(user_id)

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        async with self._store._lock:
            taken = self._store._taken_fields(username, email)
            if taken:
                raise ConstraintViolation(
                    "account already exists", {"fields": taken}
                )
            user = User.new(username, email, password_hash, role=role)
            self._store.user_rows[user.id] = user
            return user

    async def set_verified(self, user_id: str) -> Optional[User]:
        async with self._store._lock:
            user = self._store.user_rows.get(user_id)
            if not user:
                return None
            updated = replace(user, verified=True, updated_at=utcnow())
            self._store.user_rows[user_id] = updated
            return updated

    async def update_fields(
        self, username: str, patch: Dict[str, Any]
    ) -> Optional[User]:
        changes = normalize_user_patch(patch)
        async with self._store._lock:
            user = next(
                (u for u in self._store.user_rows.values() if u.username == username),
                None,
            )
            if not user:
                return None
            if not changes:
                return user
            taken = self._store._taken_fields(
                changes.get("username"), changes.get("email"), exclude_id=user.id
            )
            if taken:
                raise ConstraintViolation("account already exists", {"fields": taken})
            updated = replace(user, **changes, updated_at=utcnow())
            self._store.user_rows[user.id] = updated
            return updated

    async def delete_by_username(self, username: str) -> bool:
        async with self._store._lock:
            user = next(
                (u for u in self._store.user_rows.values() if u.username == username),
                None,
            )
            if not user:
                return False
            self._store.user_rows.pop(user.id, None)
            self._store._drop_tokens_for({user.id})
            return True

    async def delete_unverified_before(self, cutoff: datetime) -> int:
        async with self._store._lock:
            stale = {
                user.id
                for user in self._store.user_rows.values()
                if not user.verified and user.created_at < cutoff
            }
            for user_id in stale:
                self._store.user_rows.pop(user_id, None)
            self._store._drop_tokens_for(stale)
            return len(stale)


class MemorySessionStore:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def create(
        self, user_id: str, token: str, expires_at: datetime
    ) -> RefreshToken:
        async with self._store._lock:
            if token in self._store.token_rows:
                raise ConstraintViolation("token already exists", {"fields": ["token"]})
            row = RefreshToken(
                id=str(uuid.uuid4()), token=token, user_id=user_id, expires_at=expires_at
            )
            self._store.token_rows[token] = row
            return row

    async def find_by_token(self, token: str) -> Optional[RefreshToken]:
        async with self._store._lock:
            return self._store.token_rows.get(token)

    async def rotate(
        self, old_token: str, new_token: str, new_expires_at: datetime
    ) -> Optional[RefreshToken]:
        async with self._store._lock:
            row = self._store.token_rows.get(old_token)
            if row is None or row.is_expired():
                return None
            if new_token in self._store.token_rows:
                raise ConstraintViolation("token already exists", {"fields": ["token"]})
            rotated = replace(row, token=new_token, expires_at=new_expires_at)
            del self._store.token_rows[old_token]
            self._store.token_rows[new_token] = rotated
            return rotated

    async def delete_all_by_token(self, token: str) -> int:
        async with self._store._lock:
            return 1 if self._store.token_rows.pop(token, None) else 0

    async def delete_expired(self, now: datetime) -> int:
        async with self._store._lock:
            expired = [
                token
                for token, row in self._store.token_rows.items()
                if row.expires_at < now
            ]
            for token in expired:
                del self._store.token_rows[token]
            return len(expired)


class MemoryCache:
    """Process-local stand-in for the Redis verification cache."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (value, time.monotonic() + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= time.monotonic():
                self._entries.pop(key, None)
                return None
            return value

    async def delete(self, key: str) -> int:
        async with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None or entry[1] <= time.monotonic():
                return 0
            return 1


class MemoryMailQueue:
    """FIFO job queue with the same JSON job encoding as the Redis queue."""

    def __init__(self) -> None:
        self._jobs: asyncio.Queue[str] = asyncio.Queue()
        # Mirrors the queue contents in order, for inspection without consuming.
        self._backlog: Deque[str] = deque()

    async def enqueue(self, job_name: str, payload: Dict[str, Any]) -> None:
        raw = json.dumps({"name": job_name, "payload": payload})
        self._backlog.append(raw)
        self._jobs.put_nowait(raw)

    async def dequeue(self, timeout: float) -> Optional[Tuple[str, Dict[str, Any]]]:
        try:
            raw = await asyncio.wait_for(self._jobs.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self._backlog.popleft()
        job = json.loads(raw)
        return job["name"], job.get("payload") or {}

    def pending(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Snapshot of queued jobs without consuming them."""
        jobs = []
        for raw in self._backlog:
            job = json.loads(raw)
            jobs.append((job["name"], job.get("payload") or {}))
        return jobs
