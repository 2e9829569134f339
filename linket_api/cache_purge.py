"""Downstream redirect-cache invalidation.

The edge keeps a short-lived cache of ``/l/{token}`` lookups. Whenever a
tag's destination changes (claim, release, target edit) the cache entry for
that token is purged by calling the internal purge endpoint.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends

from linket_api.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PURGE_TIMEOUT_SECONDS = 2.0


class NoOpCachePurger:
    """Purger used when no purge endpoint is configured."""

    async def purge(self, public_token: Optional[str]) -> bool:
        return False


class HttpCachePurger:
    """POST {url}?token={public_token} with the shared internal secret."""

    def __init__(self, url: str, secret: str, timeout: float = PURGE_TIMEOUT_SECONDS):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    async def purge(self, public_token: Optional[str]) -> bool:
        """Purge one token's cached redirect.

        Returns:
            True if the endpoint accepted the purge

        Raises:
            httpx.HTTPError: On transport failures (handled by the task runner)
        """
        if not public_token:
            return False

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.url,
                params={"token": public_token},
                headers={"x-internal-secret": self.secret},
                timeout=self.timeout,
            )

        if response.status_code >= 400:
            logger.warning(
                f"Cache purge rejected with HTTP {response.status_code}",
                extra={"event": "cache_purge.rejected", "status_code": response.status_code},
            )
            return False

        logger.info("Redirect cache purged", extra={"event": "cache_purge.ok"})
        return True


def build_cache_purger(settings: Settings) -> NoOpCachePurger | HttpCachePurger:
    if settings.cache_purge_configured:
        return HttpCachePurger(settings.cache_purge_url, settings.internal_secret)
    return NoOpCachePurger()


def get_cache_purger(settings: Settings = Depends(get_settings)) -> NoOpCachePurger | HttpCachePurger:
    """Cache purger dependency."""
    return build_cache_purger(settings)
