"""Redis client configuration for the rate-limit store."""

from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

import redis


@lru_cache(maxsize=4)
def build_redis_client(redis_url: str, redis_password: Optional[str] = None) -> redis.Redis:
    """
    Build a Redis client for a URL (cached per URL for the process lifetime).

    - redis_url: e.g. redis://host:6379/0 or rediss://...
    - redis_password: applied only if the URL carries no password

    Returns:
        redis.Redis: Redis client
    """
    parsed = urlparse(redis_url)

    kwargs = {
        "decode_responses": True,
        "socket_connect_timeout": 2,
        "socket_timeout": 2,
        "health_check_interval": 30,
    }

    if not parsed.password and redis_password:
        kwargs["password"] = redis_password

    return redis.from_url(redis_url, **kwargs)
