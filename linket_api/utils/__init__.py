"""Utility functions and helpers."""

from linket_api.utils.logging import JSONFormatter, configure_json_logging
from linket_api.utils.security import (
    InvalidUrlError,
    hash_client_id,
    host_only,
    parse_device,
    sanitize_http_url,
)

__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "InvalidUrlError",
    "hash_client_id",
    "host_only",
    "parse_device",
    "sanitize_http_url",
]
