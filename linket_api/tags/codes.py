"""Public token and claim code generation/formatting.

Public tokens are embedded in the NFC/QR payload (``/l/{token}``) and must
stay URL-safe. Claim codes are typed by people, so their alphabet leaves out
characters that read alike (0/O, 1/I/L).
"""

import re
import secrets
from datetime import datetime, timezone
from typing import Optional

PUBLIC_TOKEN_LENGTH = 12
PUBLIC_TOKEN_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

CLAIM_CODE_LENGTH = 12
CLAIM_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CLAIM_CODE_GROUP = 4

LABEL_MAX = 64

_CLAIM_CODE_STRIP = re.compile(r"[\s-]+")


def generate_public_token(length: int = PUBLIC_TOKEN_LENGTH) -> str:
    """Generate a random lowercase alphanumeric public token."""
    return "".join(secrets.choice(PUBLIC_TOKEN_ALPHABET) for _ in range(length))


def generate_claim_code(length: int = CLAIM_CODE_LENGTH) -> str:
    """Generate a random claim code (raw form, no hyphens)."""
    return "".join(secrets.choice(CLAIM_CODE_ALPHABET) for _ in range(length))


def normalize_claim_code(raw: Optional[str]) -> str:
    """Strip hyphens and whitespace, uppercase.

    Example:
        >>> normalize_claim_code(" ab12-cd34-ef56 ")
        'AB12CD34EF56'
    """
    if not raw:
        return ""
    return _CLAIM_CODE_STRIP.sub("", raw.strip()).upper()


def format_claim_code(raw: Optional[str]) -> str:
    """Human-friendly display form: groups of 4 joined by hyphens."""
    cleaned = normalize_claim_code(raw)
    if not cleaned:
        return ""
    groups = [cleaned[i : i + CLAIM_CODE_GROUP] for i in range(0, len(cleaned), CLAIM_CODE_GROUP)]
    return "-".join(groups)


def sanitize_label(raw: Optional[str]) -> str:
    """Trim a batch label and cut it to LABEL_MAX characters."""
    return (raw or "").strip()[:LABEL_MAX]


def default_batch_label(now: Optional[datetime] = None) -> str:
    """Today's UTC date as YYYY-MM-DD."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def label_for_filename(label: str) -> str:
    """Collapse whitespace runs so the label is safe inside a filename."""
    return re.sub(r"\s+", "_", label)
