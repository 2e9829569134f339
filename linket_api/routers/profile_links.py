"""Profile link click tracking."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from linket_api.db.session import get_optional_session_factory
from linket_api.errors import InvalidInputError, UpstreamError
from linket_api.schemas import OkResponse, ProfileLinkClickRequest
from linket_api.tags.profiles import ProfileResolver

router = APIRouter(prefix="/api/profile-links", tags=["profile-links"])
logger = logging.getLogger(__name__)


@router.post("/click", response_model=OkResponse)
async def track_link_click(
    body: ProfileLinkClickRequest,
    session_factory: Optional[sessionmaker[Session]] = Depends(get_optional_session_factory),
) -> OkResponse:
    """Increment a link's click counter.

    Without a configured store the click is accepted and dropped.
    """
    link_id = (body.link_id or "").strip()
    if not link_id:
        raise InvalidInputError("linkId is required")
    if session_factory is None:
        return OkResponse()

    try:
        with session_factory() as db:
            ProfileResolver(db).increment_link_click(link_id)
            db.commit()
    except SQLAlchemyError as e:
        logger.error(
            f"Link click increment failed: {e}",
            extra={"event": "profile_link.click_failed", "link_id": link_id},
        )
        raise UpstreamError(str(e)) from e

    return OkResponse()
