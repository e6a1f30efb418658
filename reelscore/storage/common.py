"""Storage contracts shared between the memory, Postgres and Redis backends.

The session manager only talks to these protocols, so any backend pairing
(memory users with Redis cache, Postgres users with memory queue, ...) can be
wired by the runtime.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Tuple

from reelscore.storage.models import RefreshToken, Role, User

# Columns a profile update may touch.
UPDATABLE_USER_FIELDS = ("username", "email", "password_hash")

VERIFY_KEY_PREFIX = "verify:"
MAIL_QUEUE_KEY = "mail:queue"


def verification_key(token: str) -> str:
    return f"{VERIFY_KEY_PREFIX}{token}"


def normalize_user_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unknown or empty keys from a profile patch."""
    return {
        key: value
        for key, value in patch.items()
        if key in UPDATABLE_USER_FIELDS and value is not None
    }


class UserDirectory(Protocol):
    async def find_by_username(self, username: str) -> Optional[User]: ...

    async def find_by_email(self, email: str) -> Optional[User]: ...

    async def find_by_id(self, user_id: str) -> Optional[User]: ...

    async def create(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        role: Role = Role.USER,
    ) -> User:
        """Insert a user; raises ConstraintViolation naming the taken fields."""
        ...

    async def set_verified(self, user_id: str) -> Optional[User]: ...

    async def update_fields(
        self, username: str, patch: Dict[str, Any]
    ) -> Optional[User]: ...

    async def delete_by_username(self, username: str) -> bool: ...

    async def delete_unverified_before(self, cutoff: datetime) -> int: ...


class SessionStore(Protocol):
    async def create(
        self, user_id: str, token: str, expires_at: datetime
    ) -> RefreshToken: ...

    async def find_by_token(self, token: str) -> Optional[RefreshToken]: ...

    async def rotate(
        self, old_token: str, new_token: str, new_expires_at: datetime
    ) -> Optional[RefreshToken]:
        """Swap the token value in place if ``old_token`` is still current and unexpired."""
        ...

    async def delete_all_by_token(self, token: str) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...


class EphemeralCache(Protocol):
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> int: ...


class NotificationDispatcher(Protocol):
    async def enqueue(self, job_name: str, payload: Dict[str, Any]) -> None: ...

    async def dequeue(
        self, timeout: float
    ) -> Optional[Tuple[str, Dict[str, Any]]]: ...
