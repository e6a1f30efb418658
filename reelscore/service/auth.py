from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Iterable, List

from reelscore.logging import get_logger
from reelscore.service.errors import ErrorKind, Outcome
from reelscore.service.passwords import PasswordHasher
from reelscore.service.tokens import TokenIssuer
from reelscore.storage.common import (
    EphemeralCache,
    NotificationDispatcher,
    SessionStore,
    UserDirectory,
    verification_key,
)
from reelscore.storage.errors import ConstraintViolation
from reelscore.storage.models import TokenPair, User, utcnow

logger = get_logger(__name__)

REFRESH_TOKEN_TTL = timedelta(days=30)
VERIFICATION_TTL_SECONDS = 24 * 60 * 60
CONFIRMATION_JOB = "confirmation"

LOGIN_FAILED_MESSAGE = "Wrong username or password"
INVALID_REFRESH_MESSAGE = "Invalid or expired token"
UNKNOWN_REFRESH_MESSAGE = "Invalid refresh token"
INVALID_VERIFICATION_MESSAGE = "Invalid token"
USER_NOT_FOUND_MESSAGE = "User not found"
EMAIL_VERIFIED_MESSAGE = "Email verified successfully"


def conflict_outcome(fields: Iterable[str]) -> Outcome:
    """Map taken unique fields onto the client-facing conflict failure."""
    taken: List[str] = [f for f in ("email", "username") if f in set(fields)]
    if taken == ["email"]:
        message = "Email already exists"
    elif taken == ["username"]:
        message = "Username already exists"
    else:
        message = "Account already exists"
    return Outcome.failure(ErrorKind.CONFLICT, message, {"fields": taken})


class SessionManager:
    """Registration, login, refresh rotation, logout and email verification.

    Holds no mutable state of its own; every concurrent guarantee comes from
    the adapters (conditional rotation in the session store, counted deletes
    in the cache and the session store). Domain failures come back as
    ``Outcome`` values; unexpected adapter errors are logged and reported as
    ``INTERNAL`` without their details.
    """

    def __init__(
        self,
        users: UserDirectory,
        sessions: SessionStore,
        cache: EphemeralCache,
        notifier: NotificationDispatcher,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.cache = cache
        self.notifier = notifier
        self.hasher = hasher
        self.issuer = issuer
        self.logger = logger

    async def register(
        self, username: str, email: str, password: str
    ) -> Outcome[TokenPair]:
        try:
            taken = await self._taken_fields(username, email)
            if taken:
                self.logger.info("register_conflict", fields=taken)
                return conflict_outcome(taken)
            password_hash = await self.hasher.hash(password)
            try:
                user = await self.users.create(username, email, password_hash)
            except ConstraintViolation as exc:
                self.logger.info("register_conflict_race", fields=exc.fields)
                return conflict_outcome(exc.fields)
            token = secrets.token_urlsafe(32)
            await self.cache.set(
                verification_key(token), user.id, VERIFICATION_TTL_SECONDS
            )
            await self._enqueue_confirmation(user, token)
            pair = await self._start_session(user)
        except Exception as exc:
            self.logger.error("register_failed", error=str(exc), exc_info=True)
            return Outcome.internal()
        self.logger.info("user_registered", user_id=user.id)
        return Outcome.success(pair)

    async def login(self, username: str, password: str) -> Outcome[TokenPair]:
        try:
            user = await self.users.find_by_username(username)
            # Unknown usernames pay for one full verify, like a wrong password.
            stored_hash = user.password_hash if user else self.hasher.decoy_hash
            verified = await self.hasher.verify(password, stored_hash)
            if user is None or not verified:
                self.logger.info("login_failed", known_user=user is not None)
                return Outcome.failure(ErrorKind.UNAUTHORIZED, LOGIN_FAILED_MESSAGE)
            pair = await self._start_session(user)
        except Exception as exc:
            self.logger.error("login_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        self.logger.info("login_succeeded", user_id=user.id)
        return Outcome.success(pair)

    async def refresh(self, presented: str) -> Outcome[TokenPair]:
        try:
            now = utcnow()
            row = await self.sessions.find_by_token(presented)
            if row is None or row.expires_at < now:
                self.logger.info("refresh_rejected", found=row is not None)
                return Outcome.failure(ErrorKind.UNAUTHORIZED, INVALID_REFRESH_MESSAGE)
            user = await self.users.find_by_id(row.user_id)
            if user is None:
                self.logger.warning("refresh_owner_missing", user_id=row.user_id)
                return Outcome.failure(ErrorKind.NOT_FOUND, USER_NOT_FOUND_MESSAGE)
            access_token = self.issuer.issue_access(user.username, user.role.value)
            new_token = self.issuer.issue_refresh()
            rotated = await self.sessions.rotate(
                presented, new_token, now + REFRESH_TOKEN_TTL
            )
            if rotated is None:
                self.logger.info("refresh_rotation_lost_race", user_id=user.id)
                return Outcome.failure(ErrorKind.UNAUTHORIZED, INVALID_REFRESH_MESSAGE)
        except Exception as exc:
            self.logger.error("refresh_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        return Outcome.success(TokenPair(access_token, new_token))

    async def logout(self, presented: str) -> Outcome[None]:
        try:
            deleted = await self.sessions.delete_all_by_token(presented)
        except Exception as exc:
            self.logger.error("logout_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        if deleted == 0:
            return Outcome.failure(ErrorKind.UNAUTHORIZED, UNKNOWN_REFRESH_MESSAGE)
        self.logger.info("logout_succeeded", revoked=deleted)
        return Outcome.success(None)

    async def verify_email(self, token: str) -> Outcome[dict]:
        key = verification_key(token)
        try:
            user_id = await self.cache.get(key)
            if not user_id:
                return Outcome.failure(ErrorKind.NOT_FOUND, INVALID_VERIFICATION_MESSAGE)
            # Whoever removes the entry owns the redemption.
            if await self.cache.delete(key) == 0:
                self.logger.info("email_verification_already_claimed")
                return Outcome.failure(ErrorKind.NOT_FOUND, INVALID_VERIFICATION_MESSAGE)
            user = await self.users.set_verified(user_id)
            if user is None:
                self.logger.warning("email_verification_missing_user", user_id=user_id)
                return Outcome.failure(ErrorKind.NOT_FOUND, INVALID_VERIFICATION_MESSAGE)
        except Exception as exc:
            self.logger.error("email_verification_error", error=str(exc), exc_info=True)
            return Outcome.internal()
        self.logger.info("email_verified", user_id=user.id)
        return Outcome.success({"message": EMAIL_VERIFIED_MESSAGE})

    async def _taken_fields(self, username: str, email: str) -> List[str]:
        taken: List[str] = []
        if await self.users.find_by_username(username) is not None:
            taken.append("username")
        if await self.users.find_by_email(email) is not None:
            taken.append("email")
        return taken

    async def _start_session(self, user: User) -> TokenPair:
        access_token = self.issuer.issue_access(user.username, user.role.value)
        refresh_token = self.issuer.issue_refresh()
        await self.sessions.create(user.id, refresh_token, self._refresh_expiry())
        return TokenPair(access_token, refresh_token)

    async def _enqueue_confirmation(self, user: User, token: str) -> None:
        try:
            await self.notifier.enqueue(
                CONFIRMATION_JOB,
                {"email": user.email, "name": user.username, "token": token},
            )
        except Exception as exc:
            self.logger.warning(
                "confirmation_enqueue_failed", user_id=user.id, error=str(exc)
            )

    @staticmethod
    def _refresh_expiry() -> datetime:
        return utcnow() + REFRESH_TOKEN_TTL
