"""Scan/Event Recorder.

Tag events are append-only. Recording never raises into the caller: a failed
insert is logged under ``tag_event.record_failed`` and dropped. Each call
opens its own session, so it is safe to run after the request session is
gone.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session, sessionmaker

from linket_api.db.models import EVENT_SCAN
from linket_api.db.repo_tags import AssignmentRepository, TagEventRepository
from linket_api.utils.sanitize import sanitize_str
from linket_api.utils.security import (
    DEFAULT_CLIENT_ID_PEPPER,
    client_ip_from_headers,
    hash_client_id,
    host_only,
    parse_device,
)

logger = logging.getLogger(__name__)

_COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry", "x-country-code")


@dataclass(frozen=True)
class ScanContext:
    """Request context attached to scan events (no raw IP, no full referrer)."""

    device: str = "desktop"
    referrer: str = ""
    country: str = "-"
    ip_hash: str = ""

    def as_metadata(self) -> dict[str, str]:
        return {
            "device": self.device,
            "referrer": self.referrer,
            "country": self.country,
            "ip_hash": self.ip_hash,
        }


def scan_context_from_headers(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    pepper: str = DEFAULT_CLIENT_ID_PEPPER,
) -> ScanContext:
    """Build a ScanContext from request headers.

    Args:
        headers: Request headers (case-insensitive mapping)
        peer: Socket peer address, used when no forwarding header is present
        pepper: Pepper for hashing the client IP
    """
    country = "-"
    for name in _COUNTRY_HEADERS:
        value = headers.get(name)
        if value:
            country = value
            break

    return ScanContext(
        device=parse_device(headers.get("user-agent", "")),
        referrer=host_only(headers.get("referer", "")),
        country=country,
        ip_hash=hash_client_id(client_ip_from_headers(headers, peer), pepper),
    )


def build_scan_metadata(
    owner_user_id: Optional[str] = None,
    owner_profile_id: Optional[str] = None,
    context: Optional[ScanContext] = None,
    **extra: Any,
) -> dict[str, Any]:
    """Scan event metadata with current and legacy attribution keys.

    ``owner_user_id``/``owner_profile_id`` are the current names; analytics
    readers written against older rows still look for ``user_id`` and
    ``profile_id``, so both are written.
    """
    metadata: dict[str, Any] = {}
    if owner_user_id is not None:
        metadata["owner_user_id"] = owner_user_id
        metadata["user_id"] = owner_user_id
    if owner_profile_id is not None:
        metadata["owner_profile_id"] = owner_profile_id
        metadata["profile_id"] = owner_profile_id
    if context is not None:
        metadata.update(context.as_metadata())
    metadata.update({key: value for key, value in extra.items() if value is not None})
    return metadata


class EventRecorder:
    """Best-effort writer of TagEvent rows."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def record(
        self,
        tag_id: str,
        event_type: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Append one event. Never raises.

        Returns:
            True if the event was committed
        """
        try:
            with self.session_factory() as db:
                TagEventRepository(db).add(tag_id, event_type, dict(metadata or {}))
                db.commit()
            return True
        except Exception as e:
            logger.warning(
                f"Tag event not recorded: {sanitize_str(str(e))}",
                extra={
                    "event": "tag_event.record_failed",
                    "tag_id": tag_id,
                    "event_type": event_type,
                },
            )
            return False

    def touch_redirected(self, assignment_id: str) -> bool:
        """Set an assignment's last_redirected_at to now. Never raises."""
        try:
            with self.session_factory() as db:
                AssignmentRepository(db).touch_redirected(assignment_id)
                db.commit()
            return True
        except Exception as e:
            logger.warning(
                f"last_redirected_at not updated: {sanitize_str(str(e))}",
                extra={"event": "tag_assignment.touch_failed", "assignment_id": assignment_id},
            )
            return False

    async def record_scan(
        self,
        tag_id: str,
        *,
        assignment_id: Optional[str] = None,
        owner_user_id: Optional[str] = None,
        owner_profile_id: Optional[str] = None,
        context: Optional[ScanContext] = None,
        source: Optional[str] = None,
    ) -> None:
        """Record a scan and touch the assignment, concurrently.

        The event insert and the last_redirected_at update do not depend on
        each other, so neither waits for the other.
        """
        metadata = build_scan_metadata(
            owner_user_id=owner_user_id,
            owner_profile_id=owner_profile_id,
            context=context,
            source=source,
        )
        jobs = [asyncio.to_thread(self.record, tag_id, EVENT_SCAN, metadata)]
        if assignment_id:
            jobs.append(asyncio.to_thread(self.touch_redirected, assignment_id))
        await asyncio.gather(*jobs)
