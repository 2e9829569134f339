"""Health check endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from linket_api import __version__
from linket_api.config.settings import Settings, get_settings
from linket_api.db.redis_client import build_redis_client
from linket_api.db.session import get_optional_session_factory

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def check_database(session_factory: Optional[sessionmaker[Session]]) -> str:
    """Check database connectivity.

    Returns:
        str: "up", "unconfigured", or an error message
    """
    if session_factory is None:
        return "unconfigured"
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return f"down: {str(e)[:50]}"


def check_redis(settings: Settings) -> str:
    """Check Redis connectivity.

    Returns:
        str: "up", "unconfigured", or an error message
    """
    if not settings.rate_limit_configured:
        return "unconfigured"
    try:
        build_redis_client(settings.redis_url, settings.redis_password).ping()
        return "up"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return f"down: {str(e)[:50]}"


@router.get("/health", response_model=HealthResponse)
async def health(
    response: Response,
    settings: Settings = Depends(get_settings),
    session_factory: Optional[sessionmaker[Session]] = Depends(get_optional_session_factory),
) -> HealthResponse:
    """Report store and rate-limit store status.

    503 when a configured backend is down.
    """
    services = {
        "database": check_database(session_factory),
        "redis": check_redis(settings),
    }
    healthy = all(not value.startswith("down") for value in services.values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        services=services,
    )
