"""Database engine builder.

Policy:
- Default pool: NullPool (Supabase pooler runs in transaction mode)
- pool_pre_ping=True
- Supabase hosts: sslmode=require unless the URL already names a mode
- Postgres: statement_timeout applied per connection so slow claim/edit
  queries fail instead of hanging
"""

import logging
import re
from typing import Any

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

APPLICATION_NAME = "linket-api"


def is_supabase_host(url: str) -> bool:
    """Return True if the URL points to a Supabase-managed host.

    Matches *.supabase.co (direct / session pooler) and
    *.pooler.supabase.com (transaction pooler).
    """
    return ".supabase.co" in url or ".pooler.supabase.com" in url


def mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:/]+):([^@]+)@", r"://\1:***@", url)


def _postgres_connect_args(url: str, statement_timeout_ms: int) -> dict[str, Any]:
    connect_args: dict[str, Any] = {"application_name": APPLICATION_NAME}
    if is_supabase_host(url) and "sslmode=" not in url:
        connect_args["sslmode"] = "require"
    if statement_timeout_ms > 0:
        connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
    return connect_args


def build_engine(
    database_url: str,
    *,
    pool: str = "nullpool",
    statement_timeout_ms: int = 5000,
) -> Engine:
    """Build SQLAlchemy engine.

    Args:
        database_url: Database URL (postgresql://... or sqlite://...)
        pool: "nullpool" (default) or "queuepool"
        statement_timeout_ms: Postgres statement timeout, 0 disables

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If the URL is empty or the pool mode is unknown.
    """
    if not database_url:
        raise ValueError("DATABASE_URL is required to build an engine.")

    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # :memory: lives in one connection, so share it
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            # File database: one connection per session; writers wait on the lock
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False, "timeout": 10},
            )
    elif pool == "nullpool":
        engine = create_engine(
            database_url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=_postgres_connect_args(database_url, statement_timeout_ms),
        )
    elif pool == "queuepool":
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_timeout=10,
            connect_args=_postgres_connect_args(database_url, statement_timeout_ms),
        )
    else:
        raise ValueError(f"Invalid DB_POOL value: {pool}. Must be 'nullpool' or 'queuepool'.")

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        mask_password(database_url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build SQLAlchemy sessionmaker (autoflush off, expire_on_commit off).

    Rows stay readable after commit so services can return them to handlers
    and detached side effects.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
