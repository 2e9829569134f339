"""Log redaction: credentials, claim codes and client addresses.

Claim codes are bearer secrets (whoever types one owns the tag), so they are
treated like passwords. Public tokens are printed on the tag itself and are
not redacted.
"""

import re
import traceback
from typing import Any

REDACTED = "[REDACTED]"

MAX_LOG_CHARS = 4096
MAX_TRACEBACK_CHARS = 8192
MAX_DEPTH = 6

# Extra keys whose values are never logged (compared lower-cased)
_SECRET_KEYS = frozenset({
    "authorization",
    "cookie",
    "token",
    "access_token",
    "refresh_token",
    "secret",
    "internal_secret",
    "x-internal-secret",
    "sb_secret_key",
    "claim_code",
    "claimcode",
    "email",
    "phone",
    "ip",
    "ip_address",
    "x-forwarded-for",
})

# Replaced whole
_SECRET_PATTERNS = (
    re.compile(r"\b(?:Bearer|Basic)\s+\S+", re.IGNORECASE),
    re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+"),
)

# Name kept, value replaced
_SECRET_VALUE_PATTERNS = (
    re.compile(r"(x-internal-secret[\"']?\s*[:=]\s*)[\"']?[^\s\"',}]+", re.IGNORECASE),
    re.compile(
        r"\b((?:claim_?code|access_token|refresh_token|apikey|secret)=)[^&\s]+",
        re.IGNORECASE,
    ),
)


def mask_code(value: str | None) -> str:
    """Keep the last four characters of a claim code or token for log correlation."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def _redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    for pattern in _SECRET_VALUE_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


def sanitize_str(s: str) -> str:
    """Redact secrets in a log string, capping it at MAX_LOG_CHARS."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]
    if len(s) > MAX_LOG_CHARS:
        s = f"{s[:MAX_LOG_CHARS]}...[+{len(s) - MAX_LOG_CHARS} chars]"
    return _redact(s)


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Redact a log extra value: secret keys are masked, strings are scrubbed."""
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        return {
            key: REDACTED
            if isinstance(key, str) and key.lower() in _SECRET_KEYS
            else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]
    if isinstance(obj, str):
        return sanitize_str(obj)
    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Format an exc_info tuple as a redacted traceback, without locals.

    Long tracebacks keep their tail, where the raising frame is.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    text = "".join(traceback.format_exception(type(value), value, value.__traceback__))
    if len(text) > MAX_TRACEBACK_CHARS:
        text = f"...[{len(text) - MAX_TRACEBACK_CHARS} chars]{text[-MAX_TRACEBACK_CHARS:]}"
    return _redact(text)
