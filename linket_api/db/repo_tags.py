"""Repositories for hardware tags, assignments, batches and tag events.

All methods operate on the caller's Session; committing is the caller's job
so multi-row transitions stay in one transaction.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from linket_api.db.models import (
    CLAIMABLE_STATUSES,
    TAG_CLAIMED,
    TAG_RETIRED,
    TAG_UNCLAIMED,
    TARGET_PROFILE,
    HardwareTag,
    HardwareTagBatch,
    TagAssignment,
    TagEvent,
)


class TagRepository:
    """Hardware tag reads and status transitions."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, tag_id: str) -> Optional[HardwareTag]:
        return self.db.get(HardwareTag, tag_id)

    def get_by_public_token(self, public_token: str) -> Optional[HardwareTag]:
        stmt = select(HardwareTag).where(HardwareTag.public_token == public_token)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_chip_uid(self, chip_uid: str) -> Optional[HardwareTag]:
        stmt = select(HardwareTag).where(HardwareTag.chip_uid == chip_uid)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_claim_code(self, claim_code: str) -> Optional[HardwareTag]:
        stmt = select(HardwareTag).where(HardwareTag.claim_code == claim_code)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_chip_uid_or_token(self, candidates: Iterable[str]) -> Optional[HardwareTag]:
        """First tag whose chip_uid or public_token equals one of the candidates."""
        values = [value for value in dict.fromkeys(candidates) if value]
        if not values:
            return None
        stmt = (
            select(HardwareTag)
            .where(or_(HardwareTag.chip_uid.in_(values), HardwareTag.public_token.in_(values)))
            .order_by(HardwareTag.created_at.asc(), HardwareTag.id.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def claim_if_claimable(self, tag_id: str, now: Optional[datetime] = None) -> bool:
        """Atomically move a tag to claimed, only if it is still claimable.

        UPDATE hardware_tags SET status='claimed', last_claimed_at=:now
         WHERE id=:id AND status IN ('unclaimed','claimable')

        Returns:
            True if this call won the transition (exactly one row updated)
        """
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(HardwareTag)
            .where(HardwareTag.id == tag_id, HardwareTag.status.in_(CLAIMABLE_STATUSES))
            .values(status=TAG_CLAIMED, last_claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reset_to_unclaimed(self, tag_id: str) -> None:
        """Return a tag to the unclaimed pool; retired tags stay retired."""
        now = datetime.now(timezone.utc)
        self.db.execute(
            update(HardwareTag)
            .where(HardwareTag.id == tag_id, HardwareTag.status != TAG_RETIRED)
            .values(status=TAG_UNCLAIMED, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    def retire_if_active(self, tag_id: str, now: Optional[datetime] = None) -> bool:
        """Move a tag to retired unless it already is.

        Returns:
            True if this call retired the tag
        """
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(HardwareTag)
            .where(HardwareTag.id == tag_id, HardwareTag.status != TAG_RETIRED)
            .values(status=TAG_RETIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def page(
        self,
        offset: int,
        limit: int,
        batch_id: Optional[str] = None,
    ) -> Sequence[HardwareTag]:
        """One window of tags in stable (created_at, id) order."""
        stmt = select(HardwareTag)
        if batch_id is not None:
            stmt = stmt.where(HardwareTag.batch_id == batch_id)
        stmt = (
            stmt.order_by(HardwareTag.created_at.asc(), HardwareTag.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return self.db.execute(stmt).scalars().all()


class AssignmentRepository:
    """Tag assignment reads and writes."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, assignment_id: str) -> Optional[TagAssignment]:
        return self.db.get(TagAssignment, assignment_id)

    def get_for_tag(self, tag_id: str) -> Optional[TagAssignment]:
        stmt = select(TagAssignment).where(TagAssignment.tag_id == tag_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> list[tuple[TagAssignment, HardwareTag]]:
        """Assignments with their tags, oldest first."""
        stmt = (
            select(TagAssignment, HardwareTag)
            .join(HardwareTag, HardwareTag.id == TagAssignment.tag_id)
            .where(TagAssignment.user_id == user_id)
            .order_by(TagAssignment.created_at.asc(), TagAssignment.id.asc())
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def upsert_for_tag(
        self,
        tag_id: str,
        user_id: str,
        profile_id: Optional[str],
        nickname: Optional[str],
    ) -> TagAssignment:
        """Create or replace the single assignment keyed by tag_id.

        A reclaimed tag reuses the row instead of adding a second one; the
        destination resets to the profile target.
        """
        assignment = self.get_for_tag(tag_id)
        if assignment is None:
            assignment = TagAssignment(tag_id=tag_id)
            self.db.add(assignment)
        assignment.user_id = user_id
        assignment.profile_id = profile_id
        assignment.nickname = nickname
        assignment.target_type = TARGET_PROFILE
        assignment.target_url = None
        assignment.last_redirected_at = None
        self.db.flush()
        return assignment

    def delete(self, assignment: TagAssignment) -> None:
        self.db.delete(assignment)
        self.db.flush()

    def touch_redirected(self, assignment_id: str, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        self.db.execute(
            update(TagAssignment)
            .where(TagAssignment.id == assignment_id)
            .values(last_redirected_at=now)
            .execution_options(synchronize_session=False)
        )


class BatchRepository:
    """Manufacturing batches."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, label: str) -> HardwareTagBatch:
        batch = HardwareTagBatch(label=label)
        self.db.add(batch)
        self.db.flush()
        return batch

    def get(self, batch_id: str) -> Optional[HardwareTagBatch]:
        return self.db.get(HardwareTagBatch, batch_id)

    def list_all(self) -> Sequence[HardwareTagBatch]:
        stmt = select(HardwareTagBatch).order_by(
            HardwareTagBatch.created_at.asc(), HardwareTagBatch.id.asc()
        )
        return self.db.execute(stmt).scalars().all()

    def list_created_between(self, start: datetime, end: datetime) -> Sequence[HardwareTagBatch]:
        stmt = (
            select(HardwareTagBatch)
            .where(HardwareTagBatch.created_at >= start, HardwareTagBatch.created_at < end)
            .order_by(HardwareTagBatch.created_at.asc(), HardwareTagBatch.id.asc())
        )
        return self.db.execute(stmt).scalars().all()

    def count_created_between(self, start: datetime, end: datetime) -> int:
        stmt = select(func.count(HardwareTagBatch.id)).where(
            HardwareTagBatch.created_at >= start, HardwareTagBatch.created_at < end
        )
        return int(self.db.execute(stmt).scalar_one())


class TagEventRepository:
    """Append-only tag event log."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, tag_id: str, event_type: str, metadata: Optional[dict] = None) -> TagEvent:
        event = TagEvent(tag_id=tag_id, event_type=event_type, event_meta=dict(metadata or {}))
        self.db.add(event)
        self.db.flush()
        return event

    def list_for_tag(self, tag_id: str) -> Sequence[TagEvent]:
        stmt = (
            select(TagEvent)
            .where(TagEvent.tag_id == tag_id)
            .order_by(TagEvent.occurred_at.asc(), TagEvent.id.asc())
        )
        return self.db.execute(stmt).scalars().all()
