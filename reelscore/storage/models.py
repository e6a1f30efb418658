from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class User:
    id: str
    username: str
    email: str
    password_hash: str
    role: Role = Role.USER
    verified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        username: str,
        email: str,
        password_hash: str,
        *,
        role: Role = Role.USER,
    ) -> "User":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            password_hash=password_hash,
            role=role,
            verified=False,
            created_at=now,
            updated_at=now,
        )

    def public_view(self) -> dict:
        """Fields safe to return to clients; the hash never leaves the server."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "verified": self.verified,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RefreshToken:
    id: str
    token: str
    user_id: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or utcnow())


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
