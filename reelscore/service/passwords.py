from __future__ import annotations

import asyncio
import secrets

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import HashingError as Argon2HashingError
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from reelscore.config import MIN_PASSWORD_HASH_COST
from reelscore.logging import get_logger

logger = get_logger(__name__)


class HashingError(Exception):
    """The hashing backend failed; there is no fallback for the request."""


class PasswordHasher:
    """argon2id hashing with the work factor fixed at construction.

    Hashing and verification run in a worker thread so a slow hash never
    stalls the event loop.
    """

    algorithm = "argon2id"

    def __init__(self, cost: int | None = None) -> None:
        if cost is None or cost < MIN_PASSWORD_HASH_COST:
            cost = MIN_PASSWORD_HASH_COST
        self.cost = cost
        self._hasher = Argon2Hasher(time_cost=cost, type=Type.ID)
        # Verified against when the account is unknown, at the same cost as a real hash.
        self.decoy_hash = self._hasher.hash(secrets.token_urlsafe(16))

    async def hash(self, plaintext: str) -> str:
        try:
            return await asyncio.to_thread(self._hasher.hash, plaintext)
        except Argon2HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingError("password hashing failed") from exc

    async def verify(self, plaintext: str, hashed: str) -> bool:
        return await asyncio.to_thread(self._verify_sync, plaintext, hashed)

    def _verify_sync(self, plaintext: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self._hasher.verify(hashed, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_hash_unverifiable", algorithm=self.algorithm)
            return False
