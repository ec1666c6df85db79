"""Redis-backed read cache for spreadsheet rows.

Every key is prefixed with ``crm:cache:`` so the cache can share a Redis
database with other services. Values are JSON lists of raw rows. The cache is
a freshness hint only: any Redis error is logged and treated as a miss, so a
cache outage degrades to uncached reads instead of failing requests.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.crm.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.close()
        _redis_pool = None


# ── Read Cache ──────────────────────────────────────────────────────────────


class ReadCache:
    """JSON row cache with TTL and best-effort semantics.

    Args:
        redis_client: redis.asyncio client (decode_responses=True).
        ttl_seconds: Expiry for cached entries. 0 disables caching.
        prefix: Key namespace.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl_seconds: int = 60,
        prefix: str = "crm:cache:",
    ) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get_rows(self, key: str) -> list[dict[str, Any]] | None:
        """Return cached rows, or None on miss or error."""
        if self._ttl <= 0:
            return None
        try:
            raw = await self._redis.get(self._key(key))
        except Exception as exc:
            logger.warning("read_cache.get_failed", key=key, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            rows = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("read_cache.corrupt_entry", key=key)
            return None
        return rows if isinstance(rows, list) else None

    async def set_rows(self, key: str, rows: list[dict[str, Any]]) -> None:
        """Store rows under key with the configured TTL."""
        if self._ttl <= 0:
            return
        try:
            await self._redis.set(
                self._key(key), json.dumps(rows, ensure_ascii=False, default=str), ex=self._ttl
            )
        except Exception as exc:
            logger.warning("read_cache.set_failed", key=key, error=str(exc))

    async def invalidate(self, key: str) -> None:
        """Drop a cached entry. Errors are logged, never raised."""
        try:
            await self._redis.delete(self._key(key))
            logger.debug("read_cache.invalidated", key=key)
        except Exception as exc:
            logger.warning("read_cache.invalidate_failed", key=key, error=str(exc))
