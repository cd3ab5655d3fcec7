import json
from typing import Optional

from . import config


def _key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


async def get_cached_response(redis, scope: str, idem_key: str) -> Optional[tuple[int, dict]]:
    raw = await redis.get(_key(scope, idem_key))
    if not raw:
        return None
    cached = json.loads(raw)
    return cached["status_code"], cached["body"]


async def set_cached_response(redis, scope: str, idem_key: str, status_code: int, body: dict,
                              ttl_seconds: Optional[int] = None):
    ttl_seconds = ttl_seconds or config.IDEMPOTENCY_TTL_SECONDS
    await redis.setex(_key(scope, idem_key), ttl_seconds, json.dumps({"status_code": status_code, "body": body}))
