"""Environment variable resolution utilities.

Canonical env names with legacy fallbacks, resolved in one place.
"""

import logging
import os
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_SITE_ORIGIN = "http://localhost:3000"

# Placeholder values shipped in example env files; treated as unset.
_PLACEHOLDER_VALUES = frozenset({
    "https://example.supabase.co",
    "service-role-key",
    "anon-key",
    "changeme",
})


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value or value in _PLACEHOLDER_VALUES:
        return None
    return value


def get_env(*names: str) -> Optional[str]:
    """Return the first non-empty, non-placeholder value among env names.

    Later names are legacy aliases; using one is logged once per lookup.
    """
    for index, name in enumerate(names):
        value = _clean(os.getenv(name))
        if value:
            if index > 0:
                logger.info(
                    f"Using legacy {name} (consider migrating to {names[0]})",
                    extra={"event": "config.legacy_env", "env_name": name},
                )
            return value
    return None


def get_linket_env() -> str:
    """Get environment name.

    Priority:
    1. LINKET_ENV (canonical)
    2. ENV (legacy)
    3. Default: "local"
    """
    return (get_env("LINKET_ENV", "ENV") or "local").lower()


def is_production_env() -> bool:
    """Return True for prod/production environments."""
    return get_linket_env() in {"prod", "production"}


def normalize_origin(value: Optional[str]) -> Optional[str]:
    """Reduce a URL to scheme://host[:port], or None if it is not absolute.

    Examples:
        >>> normalize_origin("https://linketconnect.com/some/path")
        'https://linketconnect.com'
        >>> normalize_origin("not a url") is None
        True
    """
    value = _clean(value)
    if not value:
        return None
    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def get_site_origin() -> str:
    """Get configured public site origin.

    Canonical: SITE_URL
    Fallback (backward compat): NEXT_PUBLIC_SITE_URL
    Default: http://localhost:3000
    """
    origin = normalize_origin(get_env("SITE_URL", "NEXT_PUBLIC_SITE_URL"))
    if origin:
        return origin
    if is_production_env():
        logger.warning(
            "SITE_URL not configured in production; redirects use the default origin",
            extra={"event": "config.site_url_missing"},
        )
    return DEFAULT_SITE_ORIGIN


def get_float(name: str, default: float) -> float:
    """Read a float env var, falling back to default on absence or parse error."""
    raw = _clean(os.getenv(name))
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            f"Invalid {name} value, using default {default}",
            extra={"event": "config.invalid_value", "env_name": name},
        )
        return default


def get_int(name: str, default: int) -> int:
    """Read an int env var, falling back to default on absence or parse error."""
    raw = _clean(os.getenv(name))
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            f"Invalid {name} value, using default {default}",
            extra={"event": "config.invalid_value", "env_name": name},
        )
        return default


def get_bool(name: str, default: bool) -> bool:
    """Read a boolean env var ("true"/"false", "1"/"0")."""
    raw = _clean(os.getenv(name))
    if raw is None:
        return default
    return raw.lower() not in {"false", "0", "no", "off"}
