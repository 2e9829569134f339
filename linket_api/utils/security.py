"""URL validation and privacy-preserving request fingerprinting."""

import hashlib
import logging
import re
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})
DEFAULT_CLIENT_ID_PEPPER = "linket-dev-pepper-change-me"

_WHITESPACE_OR_CONTROL = re.compile(r"[\s\x00-\x1f\x7f]")
_BOT_UA = re.compile(r"bot|crawler|spider")
_MOBILE_UA = re.compile(r"mobile|iphone|android(?!.*tablet)")
_TABLET_UA = re.compile(r"ipad|tablet")


class InvalidUrlError(ValueError):
    """Raised when a URL is not an absolute http(s) URL."""


def is_http_url(raw: Optional[str]) -> bool:
    """Return True if raw is an absolute http(s) URL with a host."""
    if not raw or _WHITESPACE_OR_CONTROL.search(raw):
        return False
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        # Accessing .port validates the port component
        parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_URL_SCHEMES and bool(hostname)


def sanitize_http_url(raw: str) -> str:
    """Validate an absolute http(s) URL and return it unchanged.

    The value is never repaired or normalized; anything that does not
    validate is rejected.

    Raises:
        InvalidUrlError: If the URL is relative, has another scheme, or
            contains whitespace/control characters.
    """
    if not is_http_url(raw):
        raise InvalidUrlError("URL must be an absolute http(s) URL")
    return raw


def parse_device(user_agent: str) -> str:
    """Classify a user agent as bot, mobile, tablet or desktop."""
    ua = (user_agent or "").lower()
    if _BOT_UA.search(ua):
        return "bot"
    if _MOBILE_UA.search(ua):
        return "mobile"
    if _TABLET_UA.search(ua):
        return "tablet"
    return "desktop"


def host_only(referrer: Optional[str]) -> str:
    """Reduce a referrer URL to its host, or empty string."""
    if not referrer:
        return ""
    try:
        return urlsplit(referrer).netloc
    except ValueError:
        return ""


def hash_client_id(value: Optional[str], pepper: str) -> str:
    """Hash a client identifier (IP address) for storage and rate-limit keys.

    Args:
        value: Raw identifier; missing values hash as 0.0.0.0
        pepper: Secret pepper mixed into the digest

    Returns:
        Hex-encoded SHA256 hash
    """
    if pepper == DEFAULT_CLIENT_ID_PEPPER:
        logger.debug("CLIENT_ID_PEPPER not set, using development default")
    return hashlib.sha256(f"{value or '0.0.0.0'}|{pepper}".encode("utf-8")).hexdigest()


def client_ip_from_headers(headers, peer: Optional[str] = None) -> str:
    """Extract the originating client IP (first X-Forwarded-For hop)."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "0.0.0.0"
