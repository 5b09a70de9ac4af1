"""
Redis cache for region-keyed pipeline results.

Assessments and AI analyses are stored as their JSON ``to_dict()`` form
under ``crisiswatch:<namespace>:<region>`` with a per-namespace TTL.  Writes
are last-writer-wins: every cached value is a freshly built immutable
result, so there is nothing to merge.

The cache is strictly best-effort.  When Redis is disabled, unreachable or
returns something unreadable the caller sees a miss (or a failed write) and
recomputes; cache trouble never fails a request.

Usage:
    from crisiswatch.app.core.cache import RegionCache

    assessments = RegionCache("assessment", ttl=300)
    await assessments.set("Sudan", assessment.to_dict())
    cached = await assessments.get("sudan")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from crisiswatch.app.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "crisiswatch"

_client: Optional[aioredis.Redis] = None


def get_redis() -> Optional[aioredis.Redis]:
    """Shared client, created lazily; None when caching is disabled."""
    global _client
    if not settings.CACHE_ENABLED:
        return None
    if _client is None:
        _client = aioredis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        logger.info("Redis client created for %s", settings.REDIS_URL.rsplit("@", 1)[-1])
    return _client


class RegionCache:
    """
    Namespaced, TTL-bounded cache keyed by region name.

    Region names are case-folded so "Sudan" and "sudan" share an entry.
    """

    def __init__(self, namespace: str, ttl: Optional[int] = None):
        self.namespace = namespace
        self.ttl = ttl or settings.REDIS_CACHE_TTL

    @property
    def prefix(self) -> str:
        return f"{KEY_PREFIX}:{self.namespace}:"

    def key(self, region: str) -> str:
        return self.prefix + region.strip().lower()

    async def get(self, region: str) -> Optional[Any]:
        """Decoded value, or None on miss, error or undecodable entry."""
        client = get_redis()
        if client is None:
            return None
        key = self.key(region)
        try:
            raw = await client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache read failed for %s: %s", key, e, extra={"region": region})
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("Dropping undecodable cache entry %s", key, extra={"region": region})
            await self.delete(region)
            return None
        logger.debug("Cache hit %s", key, extra={"region": region})
        return value

    async def set(self, region: str, value: Any) -> bool:
        client = get_redis()
        if client is None:
            return False
        try:
            await client.set(self.key(region), json.dumps(value), ex=self.ttl)
        except (RedisError, OSError) as e:
            logger.warning("Cache write failed for %s: %s", self.key(region), e, extra={"region": region})
            return False
        return True

    async def delete(self, region: str) -> bool:
        client = get_redis()
        if client is None:
            return False
        try:
            return bool(await client.delete(self.key(region)))
        except (RedisError, OSError) as e:
            logger.warning("Cache delete failed for %s: %s", self.key(region), e)
            return False

    async def clear(self) -> int:
        """Drop every entry in this namespace; returns how many were removed."""
        client = get_redis()
        if client is None:
            return 0
        try:
            keys = [k async for k in client.scan_iter(f"{self.prefix}*")]
            if keys:
                await client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning("Cache clear failed for %s*: %s", self.prefix, e)
            return 0
        return len(keys)


async def ping_redis() -> bool:
    """True when Redis answers PING; False when disabled or unreachable."""
    client = get_redis()
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as e:
        logger.warning("Redis PING failed: %s", e)
        return False


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")
