"""Redirect Resolver: scanned token -> exactly one destination.

Public scans never see an error. An unknown token, a blank token or a data
store failure while reading the tag all land on the home page.

Lookups run in a fixed order: tag, then assignment, then target.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from sqlalchemy.orm import Session, sessionmaker

from linket_api.db.models import TARGET_URL, HardwareTag, ProfileLink, TagAssignment, UserProfile
from linket_api.db.repo_tags import AssignmentRepository, TagRepository
from linket_api.tags.profiles import ProfileResolver
from linket_api.utils.sanitize import mask_code, sanitize_str
from linket_api.utils.security import is_http_url

logger = logging.getLogger(__name__)

HOME_PATH = "/"
CLAIM_FLOW_PATH = "/dashboard/linkets"
DASHBOARD_FALLBACK_PATH = "/dashboard/linkets"

# Legacy /r?id={chipUid} destinations
LEGACY_MISSING_PATH = "/missing-tag"
LEGACY_UNRECOGNIZED_PATH = "/unrecognized"
LEGACY_CLAIM_PATH = "/claim"
LEGACY_PROFILE_PREFIX = "/u/"
LEGACY_ERROR_PATH = "/error"


@dataclass(frozen=True)
class Resolution:
    """Where a scan goes, plus what was found on the way.

    ``location`` is either a site path (starts with "/") or an absolute
    external URL taken verbatim from stored data.
    """

    location: str
    reason: str
    tag: Optional[HardwareTag] = None
    assignment: Optional[TagAssignment] = None
    profile: Optional[UserProfile] = None
    override_link: Optional[ProfileLink] = None

    @property
    def is_site_path(self) -> bool:
        return self.location.startswith("/")

    @property
    def owner_profile_id(self) -> Optional[str]:
        if self.profile is not None:
            return self.profile.id
        if self.assignment is not None:
            return self.assignment.profile_id
        return None


class RedirectResolver:
    """Resolve public tokens and legacy chip UIDs to redirect locations."""

    def __init__(self, session_factory: Optional[sessionmaker[Session]]):
        self.session_factory = session_factory

    def resolve_public_token(self, token: Optional[str]) -> Resolution:
        """Resolve ``/l/{token}``.

        Returns:
            Resolution; never raises
        """
        token = (token or "").strip()
        if not token:
            return Resolution(HOME_PATH, "blank_token")
        if self.session_factory is None:
            logger.warning(
                "Redirect store not configured",
                extra={"event": "redirect.unconfigured"},
            )
            return Resolution(HOME_PATH, "unconfigured")

        with self.session_factory() as db:
            try:
                tag = TagRepository(db).get_by_public_token(token)
            except Exception as e:
                self._log_lookup_failure("tag", token, e)
                return Resolution(HOME_PATH, "lookup_failed")

            if tag is None:
                return Resolution(HOME_PATH, "unknown_token")

            if tag.is_claimable:
                return Resolution(
                    f"{CLAIM_FLOW_PATH}?claim={quote(token, safe='')}",
                    "claimable",
                    tag=tag,
                )

            # claimed and retired resolve the same way
            try:
                assignment = AssignmentRepository(db).get_for_tag(tag.id)
                return self._resolve_assignment(db, tag, assignment)
            except Exception as e:
                self._log_lookup_failure("assignment", token, e)
                return Resolution(HOME_PATH, "lookup_failed", tag=tag)

    def resolve_chip_uid(self, chip_uid: Optional[str]) -> Resolution:
        """Resolve the legacy ``/r?id={chipUid}`` route.

        Returns:
            Resolution; never raises
        """
        chip_uid = (chip_uid or "").strip()
        if not chip_uid:
            return Resolution(LEGACY_MISSING_PATH, "blank_chip_uid")
        if self.session_factory is None:
            return Resolution(LEGACY_ERROR_PATH, "unconfigured")

        quoted = quote(chip_uid, safe="")
        with self.session_factory() as db:
            try:
                tag = TagRepository(db).get_by_chip_uid(chip_uid)
            except Exception as e:
                self._log_lookup_failure("tag", chip_uid, e)
                return Resolution(LEGACY_ERROR_PATH, "lookup_failed")

            if tag is None:
                return Resolution(f"{LEGACY_UNRECOGNIZED_PATH}?tag={quoted}", "unknown_chip_uid")

            try:
                assignment = AssignmentRepository(db).get_for_tag(tag.id)
                if assignment is None:
                    return Resolution(f"{LEGACY_CLAIM_PATH}?tag={quoted}", "unassigned", tag=tag)

                profile = ProfileResolver(db).resolve_destination(
                    assignment.user_id, assignment.profile_id
                )
            except Exception as e:
                self._log_lookup_failure("assignment", chip_uid, e)
                return Resolution(LEGACY_ERROR_PATH, "lookup_failed", tag=tag)

            if profile is None or not profile.handle:
                return Resolution(
                    f"{LEGACY_CLAIM_PATH}?tag={quoted}",
                    "no_profile",
                    tag=tag,
                    assignment=assignment,
                )
            return Resolution(
                f"{LEGACY_PROFILE_PREFIX}{quote(profile.handle, safe='')}",
                "profile",
                tag=tag,
                assignment=assignment,
                profile=profile,
            )

    def _resolve_assignment(
        self,
        db: Session,
        tag: HardwareTag,
        assignment: Optional[TagAssignment],
    ) -> Resolution:
        if assignment is None:
            return Resolution(DASHBOARD_FALLBACK_PATH, "no_assignment", tag=tag)

        if assignment.target_type == TARGET_URL and assignment.target_url:
            if is_http_url(assignment.target_url):
                return Resolution(assignment.target_url, "target_url", tag=tag, assignment=assignment)
            # Stored URL no longer validates: behave as if there were no URL target
            logger.warning(
                "Ignoring invalid stored target URL",
                extra={"event": "redirect.invalid_target_url", "tag_id": tag.id},
            )

        profiles = ProfileResolver(db)
        profile = profiles.resolve_destination(assignment.user_id, assignment.profile_id)
        if profile is None:
            return Resolution(DASHBOARD_FALLBACK_PATH, "no_profile", tag=tag, assignment=assignment)

        override = profiles.get_override_link(profile.id)
        if override is not None:
            return Resolution(
                override.url,
                "override_link",
                tag=tag,
                assignment=assignment,
                profile=profile,
                override_link=override,
            )

        if not profile.handle:
            return Resolution(DASHBOARD_FALLBACK_PATH, "no_handle", tag=tag, assignment=assignment)

        return Resolution(
            f"/{quote(profile.handle, safe='')}",
            "profile",
            tag=tag,
            assignment=assignment,
            profile=profile,
        )

    @staticmethod
    def _log_lookup_failure(stage: str, value: str, exc: Exception) -> None:
        logger.warning(
            f"Redirect lookup failed at {stage}: {sanitize_str(str(exc))}",
            extra={"event": "redirect.lookup_failed", "stage": stage, "token_hint": mask_code(value)},
        )
