"""Process-level settings, built from the environment once and injected.

Business code receives a Settings instance through the ``get_settings``
dependency (overridable in tests) instead of reading the environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from linket_api.config import env
from linket_api.utils.security import DEFAULT_CLIENT_ID_PEPPER


class Settings(BaseModel):
    """Runtime configuration for the tag service."""

    model_config = ConfigDict(frozen=True)

    environment: str = "local"
    site_origin: str = env.DEFAULT_SITE_ORIGIN

    # Privileged data-store credential
    database_url: Optional[str] = None
    db_pool: str = "nullpool"
    db_statement_timeout_ms: int = Field(default=5000, ge=0)

    # Hosted auth
    supabase_url: Optional[str] = None
    supabase_publishable_key: Optional[str] = None
    supabase_secret_key: Optional[str] = None

    # Rate-limit store
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None
    claim_rate_limit: int = Field(default=5, ge=1)
    claim_rate_window_seconds: int = Field(default=60, ge=1)
    client_id_pepper: str = DEFAULT_CLIENT_ID_PEPPER

    # Downstream redirect cache
    cache_purge_url: Optional[str] = None
    internal_secret: Optional[str] = None

    side_effect_timeout_seconds: float = Field(default=3.0, gt=0)

    json_logs: bool = True
    log_level: str = "INFO"

    # OpenTelemetry (needs the otel extra)
    otel_enabled: bool = False
    otel_service_name: str = "linket-api"

    @property
    def store_configured(self) -> bool:
        """True when the privileged data-store credential is present."""
        return bool(self.database_url)

    @property
    def auth_configured(self) -> bool:
        """True when sessions can be validated against the hosted auth provider."""
        return bool(self.supabase_url and self.supabase_publishable_key)

    @property
    def admin_auth_configured(self) -> bool:
        """True when privileged auth operations (user deletion) are possible."""
        return bool(self.supabase_url and self.supabase_secret_key)

    @property
    def rate_limit_configured(self) -> bool:
        return bool(self.redis_url)

    @property
    def cache_purge_configured(self) -> bool:
        return bool(self.cache_purge_url and self.internal_secret)

    def site_url(self, path: str = "/") -> str:
        """Build an absolute URL on the public site origin."""
        safe_path = path if path.startswith("/") else f"/{path}"
        return f"{self.site_origin.rstrip('/')}{safe_path}"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (canonical names first)."""
        return cls(
            environment=env.get_linket_env(),
            site_origin=env.get_site_origin(),
            database_url=env.get_env("DATABASE_URL"),
            db_pool=(env.get_env("DB_POOL") or "nullpool").lower(),
            db_statement_timeout_ms=env.get_int("DB_STATEMENT_TIMEOUT_MS", 5000),
            supabase_url=env.get_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
            supabase_publishable_key=env.get_env(
                "SB_PUBLISHABLE_KEY", "SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"
            ),
            supabase_secret_key=env.get_env("SB_SECRET_KEY", "SUPABASE_SERVICE_ROLE_KEY"),
            redis_url=env.get_env("REDIS_URL"),
            redis_password=env.get_env("REDIS_PASSWORD"),
            claim_rate_limit=env.get_int("CLAIM_RATE_LIMIT", 5),
            claim_rate_window_seconds=env.get_int("CLAIM_RATE_WINDOW_SECONDS", 60),
            client_id_pepper=env.get_env("CLIENT_ID_PEPPER") or DEFAULT_CLIENT_ID_PEPPER,
            cache_purge_url=env.get_env("CACHE_PURGE_URL"),
            internal_secret=env.get_env("INTERNAL_SECRET"),
            side_effect_timeout_seconds=env.get_float("SIDE_EFFECT_TIMEOUT_SECONDS", 3.0),
            json_logs=env.get_bool("LINKET_JSON_LOGS", True),
            log_level=(env.get_env("LOG_LEVEL") or "INFO").upper(),
            otel_enabled=env.get_bool("OTEL_ENABLED", False),
            otel_service_name=env.get_env("OTEL_SERVICE_NAME") or "linket-api",
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings dependency (cached for the process lifetime)."""
    return Settings.from_env()
