"""
Shared Redis connection.
The workflow itself never reads from Redis; it only clears cached views
after a commit and reports reachability on /health.
"""
from redis.asyncio import Redis, from_url

from ..config import settings

redis_client: Redis = from_url(str(settings.REDIS_URL), decode_responses=True)


async def get_redis() -> Redis:
    """FastAPI dependency; overridden in tests."""
    return redis_client
