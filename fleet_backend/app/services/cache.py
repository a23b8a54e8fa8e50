"""
Caching Service backed by Redis.

Holds the recomputed mileage chain of each vehicle. The cache is never the
source of truth: on any Redis failure reads fall through to recomputation
and writes are skipped.
"""

import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

from fleet_backend.app.core.config import settings
from fleet_backend.app.core.redis_client import get_redis

logger = logging.getLogger("fleet_backend.cache")

MILEAGE_CHAIN_PREFIX = "mileage_chain:"


def mileage_chain_key(organization_id: int, vehicle_id: int) -> str:
    return f"{MILEAGE_CHAIN_PREFIX}{organization_id}:{vehicle_id}"


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        try:
            client = await get_redis()
            raw = await client.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed", extra={"key": key, "error": str(exc)})
            return None
        if raw is None:
            return None
        return json.loads(raw)

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: int = None) -> bool:
        ttl = ttl_seconds or settings.mileage_chain_cache_ttl_seconds
        try:
            client = await get_redis()
            await client.set(key, json.dumps(data, default=str), ex=ttl)
        except RedisError as exc:
            logger.warning("Cache write failed", extra={"key": key, "error": str(exc)})
            return False
        return True

    @staticmethod
    async def delete(key: str) -> None:
        try:
            client = await get_redis()
            await client.delete(key)
        except RedisError as exc:
            logger.warning("Cache invalidation failed", extra={"key": key, "error": str(exc)})


async def invalidate_mileage_chain(organization_id: int, vehicle_id: int) -> None:
    await CacheService.delete(mileage_chain_key(organization_id, vehicle_id))
