from redis.asyncio import Redis

from . import config

# Connects lazily on first command.
redis = Redis.from_url(config.REDIS_URL, decode_responses=True)


def get_redis() -> Redis:
    return redis
