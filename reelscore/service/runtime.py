from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from reelscore.config import get_settings, reset_settings_cache
from reelscore.logging import get_logger
from reelscore.service.auth import SessionManager
from reelscore.service.email import EmailService
from reelscore.service.housekeeping import Housekeeper
from reelscore.service.mail_worker import MailWorker
from reelscore.service.passwords import PasswordHasher
from reelscore.service.tokens import TokenIssuer
from reelscore.service.users import UserService
from reelscore.storage.memory import MemoryCache, MemoryMailQueue, MemoryStore
from reelscore.storage.postgres import PostgresStore
from reelscore.storage.redis_cache import RedisCache, RedisMailQueue

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app.

    Construction wires the object graph; ``startup``/``shutdown`` own the
    async resources (the Postgres pool and the background workers).
    """

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.cache: RedisCache | MemoryCache
        self.mail_queue: RedisMailQueue | MemoryMailQueue
        redis_error: Exception | None = None
        redis_ready = False
        if self.settings.redis_url:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
                self.mail_queue = RedisMailQueue(self.settings.redis_url)
                redis_ready = True
            except Exception as exc:
                redis_error = exc

        if not redis_ready:
            if (
                not self.settings.test_mode
                and not self.settings.allow_redis_fallback_dev
            ):
                raise RuntimeError(
                    "Redis is required for email verification and the mail queue; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error

            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; verification tokens "
                    "and queued mail live in this process only."
                ),
                mode=fallback_mode,
            )
            self.cache = MemoryCache()
            self.mail_queue = MemoryMailQueue()
        self.redis_enabled = redis_ready

        self.hasher = PasswordHasher(self.settings.password_hash_cost)
        self.issuer = TokenIssuer(
            self.settings.jwt_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
        )
        self.auth = SessionManager(
            self.store.users,
            self.store.sessions,
            self.cache,
            self.mail_queue,
            self.hasher,
            self.issuer,
        )
        self.users = UserService(self.store.users, self.hasher)
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            base_url=self.settings.app_base_url,
        )
        self.mail_worker = MailWorker(
            self.mail_queue,
            self.email,
            poll_interval=self.settings.mail_worker_poll_interval,
        )
        self.housekeeper = Housekeeper(
            self.store.users,
            self.store.sessions,
            interval=self.settings.housekeeping_interval_seconds,
        )

        logger.info(
            "runtime_initialized",
            redis_enabled=self.redis_enabled,
            email_configured=self.email.is_configured,
            password_hash_cost=self.hasher.cost,
        )

    async def startup(self) -> None:
        if isinstance(self.store, PostgresStore):
            await self.store.open()
        if self.settings.mail_worker_enabled:
            await self.mail_worker.start()
        if self.settings.housekeeping_enabled:
            await self.housekeeper.start()

    async def shutdown(self) -> None:
        await self.mail_worker.stop()
        await self.housekeeper.stop()
        if isinstance(self.cache, RedisCache):
            await self.cache.close()
        if isinstance(self.mail_queue, RedisMailQueue):
            await self.mail_queue.close()
        if isinstance(self.store, PostgresStore):
            await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Shutdowns scheduled on an already running loop; held until they finish.
_shutdown_tasks: set[asyncio.Task] = set()


def _collect_shutdown(task: asyncio.Task) -> None:
    _shutdown_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "runtime_shutdown_failed", error=str(exc), error_type=type(exc).__name__
        )


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.redis_enabled:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(runtime.shutdown())
            else:
                task = loop.create_task(runtime.shutdown())
                _shutdown_tasks.add(task)
                task.add_done_callback(_collect_shutdown)

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
