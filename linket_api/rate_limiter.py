"""Sliding-window rate limiting for claim attempts.

Each (scope, client) pair owns one Redis sorted set keyed
``rl:{scope}:{hashed client id}``. Members are attempt timestamps; entries
older than the window are trimmed on every check, so the count always covers
exactly the last ``window`` seconds.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import redis
from fastapi import Depends

from linket_api.config.settings import Settings, get_settings
from linket_api.db.redis_client import build_redis_client
from linket_api.utils.security import hash_client_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate-limit check."""

    allowed: bool
    policy_id: str
    quota: int
    window: int
    remaining: int
    reset: int

    def headers(self) -> dict[str, str]:
        """IETF RateLimit-Policy and RateLimit response headers."""
        return {
            "RateLimit-Policy": f'"{self.policy_id}"; q={self.quota}; w={self.window}',
            "RateLimit": f'"{self.policy_id}"; r={self.remaining}; t={self.reset}',
        }


class RateLimiter:
    """Redis sorted-set sliding window."""

    def __init__(
        self,
        redis_client: redis.Redis,
        quota: int = 5,
        window: int = 60,
        pepper: str = "",
    ):
        self.redis = redis_client
        self.quota = quota
        self.window = window
        self.pepper = pepper

    def key_for(self, scope: str, client_id: Optional[str]) -> str:
        return f"rl:{scope}:{hash_client_id(client_id, self.pepper)}"

    def check_rate_limit(self, client_id: Optional[str], scope: str) -> RateLimitResult:
        """Record one attempt and decide whether it is within the window.

        Args:
            client_id: Raw client identifier (IP address); hashed before use
            scope: Limited operation (e.g. "claim")

        Returns:
            RateLimitResult (allowed=False once the quota is exceeded)
        """
        key = self.key_for(scope, client_id)
        now = time.time()
        window_start = now - self.window

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, window_start)
        pipe.zadd(key, {f"{now:.6f}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, self.window)
        _, _, count, oldest, _ = pipe.execute()

        count = int(count)
        allowed = count <= self.quota
        if oldest:
            reset = max(1, int(oldest[0][1] + self.window - now))
        else:
            reset = self.window

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"event": "rate_limit.exceeded", "scope": scope, "count": count},
            )

        return RateLimitResult(
            allowed=allowed,
            policy_id=scope,
            quota=self.quota,
            window=self.window,
            remaining=max(0, self.quota - count),
            reset=reset,
        )


class NoOpRateLimiter:
    """Limiter used when no rate-limit store is configured; always allows."""

    def __init__(self, quota: int = 5, window: int = 60):
        self.quota = quota
        self.window = window

    def check_rate_limit(self, client_id: Optional[str], scope: str) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            policy_id=scope,
            quota=self.quota,
            window=self.window,
            remaining=self.quota,
            reset=self.window,
        )


def build_rate_limiter(settings: Settings) -> RateLimiter | NoOpRateLimiter:
    if not settings.rate_limit_configured:
        return NoOpRateLimiter(settings.claim_rate_limit, settings.claim_rate_window_seconds)
    return RateLimiter(
        build_redis_client(settings.redis_url, settings.redis_password),
        quota=settings.claim_rate_limit,
        window=settings.claim_rate_window_seconds,
        pepper=settings.client_id_pepper,
    )


def get_rate_limiter(settings: Settings = Depends(get_settings)) -> RateLimiter | NoOpRateLimiter:
    """Claim rate limiter dependency."""
    return build_rate_limiter(settings)
