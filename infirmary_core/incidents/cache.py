import logging
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger("infirmary.cache")


class RedisCacheInvalidator:
    """
    Drops read-side cache entries after an incident changes.
    The query layer owns the keys; we only know their prefixes.
    """

    def __init__(self, redis: Redis, prefixes: list[str]):
        self.redis = redis
        self.prefixes = prefixes

    async def invalidate(self, incident_id: UUID) -> None:
        try:
            keys = []
            for prefix in self.prefixes:
                async for key in self.redis.scan_iter(match=f"{prefix}*"):
                    keys.append(key)
            if keys:
                await self.redis.delete(*keys)
            logger.debug(f"Invalidated {len(keys)} cache keys after change to {incident_id}")
        except RedisError as e:
            # Stale reads expire on their own; the committed change stands.
            logger.error(f"Cache invalidation failed for incident {incident_id}: {e}")
