"""Database session management.

The session factory is built per process from injected Settings and handed
to handlers through dependencies; nothing is created at import time.
"""

from functools import lru_cache
from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from linket_api.config.settings import Settings, get_settings
from linket_api.db.engine import build_engine, build_sessionmaker
from linket_api.errors import UnconfiguredError


@lru_cache(maxsize=4)
def _sessionmaker_for(database_url: str, pool: str, statement_timeout_ms: int) -> sessionmaker[Session]:
    engine = build_engine(database_url, pool=pool, statement_timeout_ms=statement_timeout_ms)
    return build_sessionmaker(engine)


def get_session_factory(settings: Settings = Depends(get_settings)) -> sessionmaker[Session]:
    """Get the session factory for the configured store.

    Raises:
        UnconfiguredError: If DATABASE_URL is not set
    """
    if not settings.store_configured:
        raise UnconfiguredError("Linkets service is not configured.")
    return _sessionmaker_for(
        settings.database_url, settings.db_pool, settings.db_statement_timeout_ms
    )


def get_db(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Session: SQLAlchemy session
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_optional_session_factory(
    settings: Settings = Depends(get_settings),
) -> sessionmaker[Session] | None:
    """Session factory for public redirect paths, None when unconfigured.

    Redirect handlers must never surface an error, so they take the missing
    store as a normal branch instead of an exception.
    """
    if not settings.store_configured:
        return None
    return _sessionmaker_for(
        settings.database_url, settings.db_pool, settings.db_statement_timeout_ms
    )
