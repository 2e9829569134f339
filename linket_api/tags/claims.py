"""Claim State Machine: claim, release and edit transitions for tags.

States: unclaimed and claimable (both claimable), claimed, retired.
Retiring is an admin transition from any other state and is terminal.

The claim transition is a conditional write:

    UPDATE hardware_tags SET status='claimed'
     WHERE id=:id AND status IN ('unclaimed','claimable')

Under concurrent claims of one tag, the first conditional write that lands is
authoritative; every other attempt updates zero rows and gets ConflictError.
Assignments are unique per tag_id, so a reclaim replaces rather than
duplicates.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from linket_api.db.models import (
    EVENT_CLAIM,
    EVENT_RELEASE,
    EVENT_RETIRE,
    EVENT_TARGET_CHANGE,
    TARGET_PROFILE,
    TARGET_URL,
    HardwareTag,
    TagAssignment,
)
from linket_api.db.repo_tags import AssignmentRepository, TagEventRepository, TagRepository
from linket_api.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    LinketError,
    NotFoundError,
    UpstreamError,
)
from linket_api.tags.codes import normalize_claim_code
from linket_api.tags.events import build_scan_metadata
from linket_api.tags.profiles import ProfileResolver
from linket_api.utils.sanitize import mask_code
from linket_api.utils.security import InvalidUrlError, sanitize_http_url

logger = logging.getLogger(__name__)

NICKNAME_MAX = 80
TARGET_TYPES = (TARGET_PROFILE, TARGET_URL)


@dataclass(frozen=True)
class ClaimResult:
    """An assignment together with the tag it binds."""

    assignment: TagAssignment
    tag: HardwareTag


def clean_nickname(raw: Optional[str]) -> Optional[str]:
    """Trim a nickname; blank becomes None.

    Raises:
        InvalidInputError: If longer than NICKNAME_MAX after trimming
    """
    if raw is None:
        return None
    nickname = raw.strip()
    if not nickname:
        return None
    if len(nickname) > NICKNAME_MAX:
        raise InvalidInputError(f"Nickname must be at most {NICKNAME_MAX} characters.")
    return nickname


class ClaimService:
    """Tag state transitions on one request session."""

    def __init__(self, db: Session):
        self.db = db
        self.tags = TagRepository(db)
        self.assignments = AssignmentRepository(db)
        self.events = TagEventRepository(db)
        self.profiles = ProfileResolver(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_tag(self, code_or_token: Optional[str]) -> Optional[HardwareTag]:
        """Find a tag by claim code, falling back to chip UID or public token.

        Raises:
            InvalidInputError: If the input is blank
        """
        trimmed = (code_or_token or "").strip()
        normalized = normalize_claim_code(trimmed)
        if not normalized:
            raise InvalidInputError("Claim code is required.")

        tag = self.tags.get_by_claim_code(normalized)
        if tag is not None:
            return tag
        return self.tags.find_by_chip_uid_or_token([trimmed, normalized])

    def list_for_user(self, user_id: str) -> list[ClaimResult]:
        """The account's assignments with their tags, oldest first."""
        return [
            ClaimResult(assignment=assignment, tag=tag)
            for assignment, tag in self.assignments.list_for_user(user_id)
        ]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claim(
        self,
        code_or_token: Optional[str],
        user_id: str,
        profile_id: Optional[str] = None,
        nickname: Optional[str] = None,
    ) -> ClaimResult:
        """Bind an unclaimed tag to an account.

        Args:
            code_or_token: Claim code (any hyphenation/case), chip UID or public token
            user_id: Claiming account
            profile_id: Destination profile (defaults to the account's active profile)
            nickname: Optional display label

        Returns:
            ClaimResult with the new assignment

        Raises:
            InvalidInputError: Blank code, foreign profile or bad nickname
            NotFoundError: No tag matches
            ConflictError: Tag already claimed or retired (including a lost race)
            UpstreamError: The data store failed
        """
        nickname = clean_nickname(nickname)

        try:
            tag = self.find_tag(code_or_token)
            if tag is None:
                raise NotFoundError("We couldn't find a Linket with that code.")
            if not tag.is_claimable:
                raise ConflictError()

            if profile_id:
                if not self.profiles.profile_belongs_to(profile_id, user_id):
                    raise InvalidInputError("Profile not found.")
            else:
                active = self.profiles.get_active_profile(user_id)
                profile_id = active.id if active is not None else None

            now = datetime.now(timezone.utc)
            if not self.tags.claim_if_claimable(tag.id, now):
                self.db.rollback()
                logger.info(
                    "Claim lost to a concurrent claim",
                    extra={"event": "claim.conflict", "tag_id": tag.id},
                )
                raise ConflictError()

            assignment = self.assignments.upsert_for_tag(tag.id, user_id, profile_id, nickname)
            self.db.commit()
        except LinketError:
            raise
        except IntegrityError as e:
            # Unique tag_id on assignments: a concurrent claim got there first
            self.db.rollback()
            raise ConflictError() from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Claim failed in data store: {e}",
                extra={"event": "claim.store_failed"},
            )
            raise UpstreamError() from e

        self.db.refresh(tag)
        self._emit(
            tag.id,
            EVENT_CLAIM,
            build_scan_metadata(
                owner_user_id=user_id,
                owner_profile_id=profile_id,
                assignment_id=assignment.id,
            ),
        )
        logger.info(
            "Tag claimed",
            extra={
                "event": "claim.success",
                "tag_id": tag.id,
                "user_id": user_id,
                "code": mask_code(normalize_claim_code(code_or_token)),
            },
        )
        return ClaimResult(assignment=assignment, tag=tag)

    def release(self, assignment_id: str, user_id: str) -> HardwareTag:
        """Unbind a tag from its owner and return it to unclaimed.

        Returns:
            The released tag (its public token keys the cache purge)

        Raises:
            NotFoundError: Assignment does not exist
            ForbiddenError: Caller does not own it
            UpstreamError: The data store failed
        """
        assignment = self.assignments.get_by_id(assignment_id)
        if assignment is None:
            raise NotFoundError("Linket not found.")
        if assignment.user_id != user_id:
            raise ForbiddenError()

        released = self._release_rows([assignment])
        return released[0]

    def release_all_for_user(
        self,
        user_id: str,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> list[HardwareTag]:
        """Release every tag an account holds (account deletion).

        Tags are reset to unclaimed, never deleted.

        Args:
            user_id: Account whose tags are released
            before_commit: Called once the release is staged; if it raises,
                the release is rolled back and the error propagates

        Raises:
            UpstreamError: The data store failed
        """
        assignments = [assignment for assignment, _ in self.assignments.list_for_user(user_id)]
        if not assignments:
            if before_commit is not None:
                before_commit()
            return []
        return self._release_rows(assignments, before_commit)

    def retire(self, tag_id: str, admin_user_id: str) -> HardwareTag:
        """Take a tag out of circulation (admin).

        A retired tag keeps its assignment, so it still resolves to its
        owner, but it can never be claimed again.

        Raises:
            NotFoundError: Unknown tag
            ConflictError: Tag is already retired
            UpstreamError: The data store failed
        """
        tag = self.tags.get_by_id(tag_id)
        if tag is None:
            raise NotFoundError("Linket not found.")

        try:
            if not self.tags.retire_if_active(tag.id):
                self.db.rollback()
                raise ConflictError("This Linket is already retired.")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Retire failed in data store: {e}",
                extra={"event": "retire.store_failed", "tag_id": tag_id},
            )
            raise UpstreamError() from e

        self.db.refresh(tag)
        self._emit(tag.id, EVENT_RETIRE, {"retired_by": admin_user_id})
        logger.info(
            "Tag retired",
            extra={"event": "retire.success", "tag_id": tag.id, "user_id": admin_user_id},
        )
        return tag

    def update(
        self,
        assignment_id: str,
        user_id: str,
        changes: Mapping[str, Any],
    ) -> ClaimResult:
        """Apply owner edits (nickname, target_type, profile_id, target_url).

        Only keys present in ``changes`` are applied. A URL target must be an
        absolute http(s) URL and is stored exactly as given; switching target
        type clears the other target field.

        Raises:
            ForbiddenError: Assignment missing or not owned by the caller
            InvalidInputError: Bad URL, foreign profile, bad target type or nickname
            UpstreamError: The data store failed
        """
        assignment = self.assignments.get_by_id(assignment_id)
        if assignment is None or assignment.user_id != user_id:
            raise ForbiddenError()

        applied: dict[str, Any] = {}

        if "nickname" in changes:
            applied["nickname"] = clean_nickname(changes.get("nickname"))

        target_type = changes.get("target_type")
        if target_type is not None:
            if target_type not in TARGET_TYPES:
                raise InvalidInputError("target_type must be 'profile' or 'url'.")
            applied["target_type"] = target_type

        if target_type == TARGET_PROFILE:
            profile_id = changes.get("profile_id")
            if profile_id and not self.profiles.profile_belongs_to(profile_id, user_id):
                raise InvalidInputError("Profile not found.")
            # None follows the account's active profile at redirect time
            applied["profile_id"] = profile_id or None
            applied["target_url"] = None

        if target_type == TARGET_URL:
            target_url = changes.get("target_url")
            if not target_url:
                raise InvalidInputError("A target URL is required.")
            try:
                applied["target_url"] = sanitize_http_url(target_url)
            except InvalidUrlError as e:
                raise InvalidInputError("Target URL must be an absolute http(s) URL.") from e
            applied["profile_id"] = None

        tag = self.tags.get_by_id(assignment.tag_id)
        try:
            for field, value in applied.items():
                setattr(assignment, field, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Assignment update failed in data store: {e}",
                extra={"event": "assignment.update_failed", "assignment_id": assignment_id},
            )
            raise UpstreamError() from e

        self._emit(assignment.tag_id, EVENT_TARGET_CHANGE, applied)
        logger.info(
            "Assignment updated",
            extra={
                "event": "assignment.updated",
                "assignment_id": assignment_id,
                "fields": sorted(applied),
            },
        )
        return ClaimResult(assignment=assignment, tag=tag)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _release_rows(
        self,
        assignments: list[TagAssignment],
        before_commit: Optional[Callable[[], None]] = None,
    ) -> list[HardwareTag]:
        released: list[tuple[TagAssignment, HardwareTag]] = []
        try:
            for assignment in assignments:
                tag = self.tags.get_by_id(assignment.tag_id)
                self.assignments.delete(assignment)
                self.tags.reset_to_unclaimed(assignment.tag_id)
                released.append((assignment, tag))
            if before_commit is not None:
                before_commit()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Release failed in data store: {e}",
                extra={"event": "release.store_failed"},
            )
            raise UpstreamError() from e
        except Exception:
            self.db.rollback()
            raise

        tags = []
        for assignment, tag in released:
            self.db.refresh(tag)
            self._emit(
                tag.id,
                EVENT_RELEASE,
                build_scan_metadata(
                    owner_user_id=assignment.user_id,
                    owner_profile_id=assignment.profile_id,
                    assignment_id=assignment.id,
                ),
            )
            logger.info(
                "Tag released",
                extra={"event": "release.success", "tag_id": tag.id, "user_id": assignment.user_id},
            )
            tags.append(tag)
        return tags

    def _emit(self, tag_id: str, event_type: str, metadata: dict[str, Any]) -> None:
        """Write a transition event; failures are logged, never raised."""
        try:
            self.events.add(tag_id, event_type, metadata)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Tag event not recorded: {e}",
                extra={
                    "event": "tag_event.record_failed",
                    "tag_id": tag_id,
                    "event_type": event_type,
                },
            )
