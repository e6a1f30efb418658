from __future__ import annotations

from typing import Any, Dict, Optional

from reelscore.logging import get_logger
from reelscore.service.auth import USER_NOT_FOUND_MESSAGE, conflict_outcome
from reelscore.service.errors import ErrorKind, Outcome
from reelscore.service.passwords import PasswordHasher
from reelscore.storage.common import UserDirectory
from reelscore.storage.errors import ConstraintViolation
from reelscore.storage.models import User

logger = get_logger(__name__)


class UserService:
    """Profile lookups and self-service account changes."""

    def __init__(self, users: UserDirectory, hasher: PasswordHasher) -> None:
        self.users = users
        self.hasher = hasher

    async def get_profile(self, username: str) -> Outcome[User]:
        try:
            user = await self.users.find_by_username(username)
        except Exception as exc:
            logger.error("user_lookup_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        if user is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, USER_NOT_FOUND_MESSAGE)
        return Outcome.success(user)

    async def update_profile(
        self,
        username: str,
        *,
        new_username: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Outcome[User]:
        patch: Dict[str, Any] = {}
        if new_username is not None and new_username != username:
            patch["username"] = new_username
        if email is not None:
            patch["email"] = email
        try:
            if password is not None:
                patch["password_hash"] = await self.hasher.hash(password)
            try:
                user = await self.users.update_fields(username, patch)
            except ConstraintViolation as exc:
                return conflict_outcome(exc.fields)
        except Exception as exc:
            logger.error("user_update_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        if user is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, USER_NOT_FOUND_MESSAGE)
        logger.info("user_updated", user_id=user.id, fields=sorted(patch))
        return Outcome.success(user)

    async def delete_account(self, username: str) -> Outcome[dict]:
        try:
            deleted = await self.users.delete_by_username(username)
        except Exception as exc:
            logger.error("user_delete_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        if not deleted:
            return Outcome.failure(ErrorKind.NOT_FOUND, USER_NOT_FOUND_MESSAGE)
        logger.info("user_deleted")
        return Outcome.success({"message": "User deleted successfully"})
