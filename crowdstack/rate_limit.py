import logging
import time

from .errors import RateLimited

logger = logging.getLogger(__name__)


async def fixed_window(redis, key: str, limit: int, window_seconds: int = 60) -> bool:
    """Count one hit for ``key`` and report whether it is within ``limit``.

    INCR is atomic, so concurrent requests cannot both slip under the limit.
    """
    window = int(time.time() // window_seconds)
    bucket_key = f"rl:{key}:{window}"

    count = await redis.incr(bucket_key)
    if count == 1:
        await redis.expire(bucket_key, window_seconds * 2)
    return count <= limit


async def enforce(redis, key: str, limit: int, window_seconds: int = 60) -> None:
    if not await fixed_window(redis, key, limit, window_seconds):
        logger.warning("rate limited key=%s limit=%d/%ds", key, limit, window_seconds)
        raise RateLimited()
