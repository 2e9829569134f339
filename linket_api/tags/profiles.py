"""Profile Resolver: active profile and link lookups for tag redirects."""

import logging
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from linket_api.db.models import ProfileLink, UserProfile
from linket_api.utils.security import is_http_url

logger = logging.getLogger(__name__)


class ProfileResolver:
    """Resolve an account's public profile and its ordered links.

    Profiles may be many per account, but only one is "active" for default
    resolution. If stored data holds several active profiles, the oldest wins.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, profile_id: Optional[str]) -> Optional[UserProfile]:
        if not profile_id:
            return None
        return self.db.get(UserProfile, profile_id)

    def get_active_profile(self, user_id: Optional[str]) -> Optional[UserProfile]:
        """Currently active profile of an account, or None."""
        if not user_id:
            return None
        stmt = (
            select(UserProfile)
            .where(UserProfile.user_id == user_id, UserProfile.is_active.is_(True))
            .order_by(UserProfile.created_at.asc(), UserProfile.id.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_profiles(self, user_id: str) -> Sequence[UserProfile]:
        stmt = (
            select(UserProfile)
            .where(UserProfile.user_id == user_id)
            .order_by(UserProfile.created_at.asc(), UserProfile.id.asc())
        )
        return self.db.execute(stmt).scalars().all()

    def profile_belongs_to(self, profile_id: str, user_id: str) -> bool:
        profile = self.get_profile(profile_id)
        return profile is not None and profile.user_id == user_id

    def resolve_destination(
        self,
        user_id: Optional[str],
        profile_id: Optional[str],
    ) -> Optional[UserProfile]:
        """Destination profile for an assignment.

        The assignment's own profile wins while it still exists; otherwise the
        account's active profile is used.
        """
        profile = self.get_profile(profile_id)
        if profile is not None:
            return profile
        return self.get_active_profile(user_id)

    def get_links(self, profile_id: str) -> Sequence[ProfileLink]:
        """Active links in display order (order_index, then creation time)."""
        stmt = (
            select(ProfileLink)
            .where(ProfileLink.profile_id == profile_id, ProfileLink.is_active.is_(True))
            .order_by(
                ProfileLink.order_index.asc(),
                ProfileLink.created_at.asc(),
                ProfileLink.id.asc(),
            )
        )
        return self.db.execute(stmt).scalars().all()

    def get_override_link(self, profile_id: str) -> Optional[ProfileLink]:
        """First active override link, by order_index then creation time.

        Several active overrides on one profile are tolerated; only the first
        is used. Overrides whose stored URL does not validate are skipped.
        """
        stmt = (
            select(ProfileLink)
            .where(
                ProfileLink.profile_id == profile_id,
                ProfileLink.is_active.is_(True),
                ProfileLink.is_override.is_(True),
            )
            .order_by(
                ProfileLink.order_index.asc(),
                ProfileLink.created_at.asc(),
                ProfileLink.id.asc(),
            )
        )
        for link in self.db.execute(stmt).scalars():
            if is_http_url(link.url):
                return link
            logger.warning(
                "Skipping override link with invalid URL",
                extra={"event": "profile.override_invalid", "link_id": link.id},
            )
        return None

    def get_link(self, link_id: str) -> Optional[ProfileLink]:
        return self.db.get(ProfileLink, link_id)

    def increment_link_click(self, link_id: str) -> bool:
        """Atomically bump a link's click counter.

        Returns:
            True if a link row was updated
        """
        result = self.db.execute(
            update(ProfileLink)
            .where(ProfileLink.id == link_id)
            .values(click_count=ProfileLink.click_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def increment_link_click_detached(session_factory: sessionmaker[Session], link_id: str) -> bool:
    """Bump a link's click counter in its own session (runs after the response)."""
    with session_factory() as db:
        updated = ProfileResolver(db).increment_link_click(link_id)
        db.commit()
    return updated
