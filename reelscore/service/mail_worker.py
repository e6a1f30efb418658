"""Background consumer for the mail queue.

Registration only enqueues a ``confirmation`` job; this worker pops jobs and
hands them to the email service. Delivery happens off the request path, so a
slow or failing SMTP server never delays or fails a registration.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from reelscore.logging import get_logger
from reelscore.service.auth import CONFIRMATION_JOB
from reelscore.service.email import EmailService
from reelscore.storage.common import NotificationDispatcher

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5
MAX_BACKOFF_SECONDS = 300


class MailWorker:
    """Pops mail jobs and dispatches them by job name."""

    def __init__(
        self,
        queue: NotificationDispatcher,
        email_service: EmailService,
        *,
        poll_interval: int = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.queue = queue
        self.email = email_service
        self.poll_interval = poll_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            logger.warning("mail_worker_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("mail_worker_started", poll_interval=self.poll_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("mail_worker_stopped")

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while self._running:
            try:
                await self.process_next(timeout=self.poll_interval)
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(
                    "mail_worker_loop_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    consecutive_errors=consecutive_errors,
                )
                backoff = min(
                    MAX_BACKOFF_SECONDS, self.poll_interval * (2 ** (consecutive_errors - 1))
                )
                await asyncio.sleep(backoff)

    async def process_next(self, *, timeout: float) -> bool:
        """Handle at most one job; returns False when the queue stayed empty."""
        job = await self.queue.dequeue(timeout)
        if job is None:
            return False
        name, payload = job
        await self.handle(name, payload)
        return True

    async def handle(self, name: str, payload: Dict[str, Any]) -> bool:
        logger.info("mail_job_processing", job_name=name)
        if name == CONFIRMATION_JOB:
            try:
                email = payload["email"]
                token = payload["token"]
            except KeyError as exc:
                logger.warning("mail_job_malformed", job_name=name, missing=str(exc))
                return False
            # smtplib blocks; keep it off the event loop.
            return await asyncio.to_thread(
                self.email.send_email_verification,
                email,
                payload.get("name") or "",
                token,
            )
        logger.warning("mail_job_unknown", job_name=name)
        return False
