"""
Redis caching service for slot listings.

CACHING STRATEGY
================

What we cache:
  - Slot listing responses (paginated, JSON-serialized)
  - Key: "slots:list:" + the listing filters, sorted by name, e.g.
    "slots:list:available=False&date=2026-03-01&page=1&size=10"

Why:
  - Members refresh the day's slot list far more often than they book
  - Serving from Redis avoids a filtered, sorted slot query per refresh

Invalidation:
  - On any capacity change (booking, cancellation, admin status override)
  - On slot creation, edit, deactivation, deletion and default generation
  - TTL expiry (REDIS_CACHE_TTL) as the backstop

  Every listing key shares the "slots:list:" prefix, so invalidation is a
  SCAN over that prefix followed by batched UNLINKs.

Individual slots are never cached: availability shown on a slot page and
every reservation read the live counters from the database.

Redis is optional. When it is disabled or unreachable every read is a miss
and every write is a no-op.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis
from slotbooking.core.config import get_settings
from slotbooking.core.logging import get_logger
from slotbooking.core.metrics import record_cache_operation, redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

SLOT_LIST_PREFIX = "slots:list:"
INVALIDATION_BATCH = 100

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Lazily connect. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is not None:
        return _redis_client

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except Exception as e:
        redis_connection_errors.inc()
        logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    _redis_client = client
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def make_slot_list_key(filters: dict) -> str:
    """Stable key for a listing: filter order and unset filters don't matter."""
    parts = [f"{name}={filters[name]}" for name in sorted(filters) if filters[name] is not None]
    return SLOT_LIST_PREFIX + "&".join(parts)


async def _read_json(key: str) -> Optional[Any]:
    client = await get_redis()
    if client is None:
        return None
    try:
        raw = await client.get(key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    record_cache_operation("get", hit=raw is not None)
    logger.debug("cache_hit" if raw is not None else "cache_miss", key=key)
    return json.loads(raw) if raw is not None else None


async def _write_json(key: str, value: Any, ttl: int) -> None:
    client = await get_redis()
    if client is None:
        return
    try:
        await client.setex(key, ttl, json.dumps(value, default=str))
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))
        return
    logger.debug("cache_set", key=key, ttl=ttl)


async def get_cached_slots(filters: dict) -> Optional[dict]:
    return await _read_json(make_slot_list_key(filters))


async def set_cached_slots(filters: dict, data: dict) -> None:
    await _write_json(make_slot_list_key(filters), data, settings.REDIS_CACHE_TTL)


async def invalidate_slot_cache() -> int:
    """Drop every cached slot listing. Returns the number of keys removed."""
    client = await get_redis()
    if client is None:
        return 0

    deleted = 0
    batch = []
    try:
        async for key in client.scan_iter(match=SLOT_LIST_PREFIX + "*", count=INVALIDATION_BATCH):
            batch.append(key)
            if len(batch) >= INVALIDATION_BATCH:
                deleted += await client.unlink(*batch)
                batch = []
        if batch:
            deleted += await client.unlink(*batch)
    except Exception as e:
        # Stale listings expire with their TTL
        logger.error("cache_invalidation_error", error=str(e), keys_deleted=deleted)
        return deleted

    logger.info("cache_invalidated", keys_deleted=deleted)
    return deleted


async def get_cache_stats() -> dict:
    """Redis hit/miss figures for the health endpoint."""
    client = await get_redis()
    if client is None:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except Exception as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
