from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reelscore.api.error_handling import register_exception_handlers
from reelscore.api.routes import router
from reelscore.config import Settings
from reelscore.logging import REQUEST_ID_HEADER, bind_request_id, get_logger
from reelscore.service.runtime import get_runtime
from reelscore.storage.postgres import PostgresStore
from reelscore.storage.redis_cache import RedisCache

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage pools and start background workers for the app's lifetime."""
    runtime = get_runtime()
    await runtime.startup()
    logger.info(
        "app_started",
        mail_worker=runtime.settings.mail_worker_enabled,
        housekeeping=runtime.settings.housekeeping_enabled,
    )

    yield

    try:
        await runtime.shutdown()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="The Reel Score", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Local dev hosts; no wildcard since the refresh cookie needs credentials.
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
    max_age=3600,
)


@app.middleware("http")
async def bind_request_context(request, call_next):
    """Bind the caller's request id (or a new one) to logs and echo it back."""
    request_id = bind_request_id(request.headers.get(REQUEST_ID_HEADER))
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def _run_bounded(label: str, check: Callable[[], Awaitable[Any]]) -> bool:
    try:
        await asyncio.wait_for(check(), HEALTH_CHECK_TIMEOUT_SECONDS)
        return True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except Exception as exc:
        logger.error("health_check_failed", component=label, error=str(exc))
    return False


@app.get("/healthz")
async def health():
    """Report database and Redis reachability; 503 when any check fails."""
    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    if isinstance(runtime.store, PostgresStore):
        store = runtime.store
        db_ok = await _run_bounded("database", lambda: store.fetch_one("SELECT 1", ()))
        checks["database"] = {"status": "ok" if db_ok else "error", "backend": "postgres"}
    else:
        checks["database"] = {"status": "ok", "backend": "memory"}

    if isinstance(runtime.cache, RedisCache):
        cache = runtime.cache
        redis_ok = await _run_bounded("redis", lambda: cache.client.ping())
        checks["redis"] = {"status": "ok" if redis_ok else "error"}
    else:
        checks["redis"] = {"status": "disabled"}

    healthy = all(check["status"] != "error" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "version": __version__,
            "checks": checks,
        },
    )


register_exception_handlers(app)
app.include_router(router)


def create_app() -> FastAPI:
    return app
