"""
Redis-backed result cache and one-shot claim for the epidemic core.

Two consumers:
    • EpidemicService caches grid and cluster payloads under ``gis:*`` keys
    • AlertDispatcher claims ``alert:cooldown:{user}:{zone}`` keys with
      ``acquire_once`` to suppress repeated zone-entry pushes

Nothing here raises.  With CACHE_ENABLED off, or Redis unreachable, reads
miss, writes are dropped and every ``acquire_once`` caller wins, so a cache
outage never blocks aggregation or alerting.

Usage:
    from backend.app.core.cache import cache_get, cache_set, make_cache_key

    key = make_cache_key("gis:grid", case_filter.to_dict(), 0.1)
    result = await cache_get(key)
    if result is None:
        result = compute()
        await cache_set(key, result, ttl=60)
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# redis.asyncio.Redis, created on first use
_redis_client = None


def _client():
    global _redis_client
    if not settings.CACHE_ENABLED:
        return None
    if _redis_client is None:
        import redis.asyncio as aioredis

        _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Redis client created for %s", settings.REDIS_URL)
    return _redis_client


async def _guarded(op: str, key: str, call: Callable[[Any], Awaitable[T]], fallback: T) -> T:
    """Run ``call(client)``; any Redis failure is logged and yields ``fallback``."""
    client = _client()
    if client is None:
        return fallback
    try:
        return await call(client)
    except Exception as e:
        logger.warning("Redis %s failed for %s: %s", op, key, e)
        return fallback


async def cache_get(key: str) -> Optional[Any]:
    """Decoded JSON value for ``key``, or None on miss."""
    async def call(client):
        raw = await client.get(key)
        return None if raw is None else json.loads(raw)
    return await _guarded("GET", key, call, None)


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Store ``value`` as JSON for ``ttl`` seconds (REDIS_CACHE_TTL by default)."""
    payload = json.dumps(value, default=str)

    async def call(client):
        await client.set(key, payload, ex=ttl or settings.REDIS_CACHE_TTL)
        return True
    return await _guarded("SET", key, call, False)


async def cache_clear_prefix(prefix: str) -> int:
    """Delete every key starting with ``prefix``; returns how many went."""
    async def call(client):
        keys = [k async for k in client.scan_iter(f"{prefix}*")]
        if keys:
            await client.delete(*keys)
        return len(keys)
    return await _guarded("SCAN/DEL", f"{prefix}*", call, 0)


async def acquire_once(key: str, ttl: int) -> bool:
    """
    Claim ``key`` for ``ttl`` seconds with SET NX EX.

    True when this caller got the claim, False when someone holds it.
    """
    async def call(client):
        return bool(await client.set(key, "1", ex=ttl, nx=True))
    return await _guarded("SETNX", key, call, True)


async def cache_ping() -> Optional[bool]:
    """PING result; None when caching is disabled."""
    if _client() is None:
        return None

    async def call(client):
        return bool(await client.ping())
    return await _guarded("PING", "-", call, False)


def make_cache_key(prefix: str, *parts: Any) -> str:
    """``prefix:<digest>`` where the digest is stable under dict key order."""
    raw = json.dumps(parts, sort_keys=True, default=str)
    return f"{prefix}:{hashlib.md5(raw.encode()).hexdigest()[:12]}"


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
