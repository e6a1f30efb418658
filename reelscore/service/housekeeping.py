from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from reelscore.logging import get_logger
from reelscore.storage.common import SessionStore, UserDirectory
from reelscore.storage.models import utcnow

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60
UNVERIFIED_GRACE = timedelta(hours=24)


@dataclass
class SweepResult:
    expired_tokens: int = 0
    unverified_users: int = 0


class Housekeeper:
    """Periodic cleanup of expired refresh tokens and unconfirmed accounts."""

    def __init__(
        self,
        users: UserDirectory,
        sessions: SessionStore,
        *,
        interval: int = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            logger.warning("housekeeping_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("housekeeping_started", interval=self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("housekeeping_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except Exception as exc:
                logger.error(
                    "housekeeping_sweep_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            await asyncio.sleep(self.interval)

    async def delete_expired_tokens(self) -> int:
        count = await self.sessions.delete_expired(utcnow())
        logger.info("expired_tokens_deleted", count=count)
        return count

    async def delete_unverified_users(self) -> int:
        count = await self.users.delete_unverified_before(utcnow() - UNVERIFIED_GRACE)
        logger.info("unverified_users_deleted", count=count)
        return count

    async def sweep(self) -> SweepResult:
        return SweepResult(
            expired_tokens=await self.delete_expired_tokens(),
            unverified_users=await self.delete_unverified_users(),
        )
