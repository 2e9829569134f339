"""Public scan redirects.

GET /l/{token}  -> 302 to the tag's destination
GET /r?id=...   -> 307, legacy chip-UID route

These handlers never render an error. Scan events and override click counts
are written after the redirect is sent, as detached side effects.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session, sessionmaker

from linket_api.config.settings import Settings, get_settings
from linket_api.context import tag_id_var
from linket_api.db.session import get_optional_session_factory
from linket_api.tags.events import EventRecorder, scan_context_from_headers
from linket_api.tags.profiles import increment_link_click_detached
from linket_api.tags.redirects import HOME_PATH, RedirectResolver, Resolution
from linket_api.tasks import DetachedTaskRunner, get_task_runner

router = APIRouter(tags=["redirects"])
logger = logging.getLogger(__name__)


def _absolute(settings: Settings, location: str) -> str:
    if location.startswith("/"):
        return settings.site_url(location)
    return location


def _schedule_scan(
    request: Request,
    background_tasks: BackgroundTasks,
    runner: DetachedTaskRunner,
    settings: Settings,
    session_factory: sessionmaker[Session],
    resolution: Resolution,
    source: str,
) -> None:
    tag = resolution.tag
    assignment = resolution.assignment
    tag_id_var.set(tag.id)

    context = scan_context_from_headers(
        request.headers,
        peer=request.client.host if request.client else None,
        pepper=settings.client_id_pepper,
    )
    runner.schedule(
        background_tasks,
        "tag_event.scan",
        EventRecorder(session_factory).record_scan,
        tag.id,
        assignment_id=assignment.id if assignment is not None else None,
        owner_user_id=assignment.user_id if assignment is not None else None,
        owner_profile_id=resolution.owner_profile_id,
        context=context,
        source=source,
    )


@router.get("/l", include_in_schema=False)
async def scan_without_token(settings: Settings = Depends(get_settings)) -> RedirectResponse:
    return RedirectResponse(settings.site_url(HOME_PATH), status_code=302)


@router.get("/l/{token}")
async def scan_public_token(
    token: str,
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    session_factory: Optional[sessionmaker[Session]] = Depends(get_optional_session_factory),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> RedirectResponse:
    """Redirect a scanned tag to its destination.

    Unknown, blank or unreadable tokens go home without an event. Every scan
    of a known tag records exactly one scan event.
    """
    resolution = RedirectResolver(session_factory).resolve_public_token(token)

    if resolution.tag is not None and session_factory is not None:
        _schedule_scan(
            request, background_tasks, runner, settings, session_factory, resolution, "l"
        )
        if resolution.override_link is not None:
            runner.schedule(
                background_tasks,
                "profile_link.click",
                increment_link_click_detached,
                session_factory,
                resolution.override_link.id,
            )

    logger.info(
        "Scan redirect resolved",
        extra={"event": "redirect.resolved", "reason": resolution.reason},
    )
    return RedirectResponse(_absolute(settings, resolution.location), status_code=302)


@router.get("/r")
async def scan_chip_uid(
    request: Request,
    background_tasks: BackgroundTasks,
    chip_uid: Optional[str] = Query(None, alias="id"),
    settings: Settings = Depends(get_settings),
    session_factory: Optional[sessionmaker[Session]] = Depends(get_optional_session_factory),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> RedirectResponse:
    """Legacy chip-UID redirect (/r?id={chipUid})."""
    resolution = RedirectResolver(session_factory).resolve_chip_uid(chip_uid)

    if resolution.tag is not None and session_factory is not None:
        _schedule_scan(
            request, background_tasks, runner, settings, session_factory, resolution, "r"
        )

    logger.info(
        "Legacy scan redirect resolved",
        extra={"event": "redirect.resolved", "reason": resolution.reason},
    )
    return RedirectResponse(_absolute(settings, resolution.location), status_code=307)
