from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis

from reelscore.storage.common import MAIL_QUEUE_KEY


def _verify_url(redis_url: str) -> None:
    # A short-lived synchronous client keeps the async client from binding to a
    # temporary event loop during startup checks.
    sync_client = Redis.from_url(redis_url, decode_responses=True)
    try:
        sync_client.ping()
    finally:
        sync_client.close()


class RedisCache:
    """Thin Redis wrapper for short-lived verification entries."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        _verify_url(self.redis_url)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def delete(self, key: str) -> int:
        # DEL reports how many keys it removed, so concurrent callers can tell
        # which one actually claimed the entry.
        return int(await self.client.delete(key))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class RedisMailQueue:
    """Mail job queue on a Redis list (LPUSH producers, BRPOP consumers)."""

    def __init__(
        self,
        redis_url: str,
        *,
        queue_key: str = MAIL_QUEUE_KEY,
        connect_timeout: float = 5.0,
    ):
        self.redis_url = redis_url
        self.queue_key = queue_key
        # No socket timeout: BRPOP blocks for up to the poll interval.
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=None,
            socket_connect_timeout=connect_timeout,
        )

    def verify_connection(self) -> None:
        _verify_url(self.redis_url)

    async def enqueue(self, job_name: str, payload: Dict[str, Any]) -> None:
        job = json.dumps({"name": job_name, "payload": payload})
        await self.client.lpush(self.queue_key, job)

    async def dequeue(self, timeout: float) -> Optional[Tuple[str, Dict[str, Any]]]:
        result = await self.client.brpop([self.queue_key], timeout=max(1, int(timeout)))
        if not result:
            return None
        _, raw = result
        job = json.loads(raw)
        return job["name"], job.get("payload") or {}

    async def close(self) -> None:
        await self.client.close()
        await self.client.connection_pool.disconnect()
