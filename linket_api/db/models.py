"""SQLAlchemy ORM Models for the tag service."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BIGINT,
    BOOLEAN,
    INTEGER,
    JSON,
    TEXT,
    TIMESTAMP,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Hardware tag statuses
TAG_UNCLAIMED = "unclaimed"
TAG_CLAIMABLE = "claimable"
TAG_CLAIMED = "claimed"
TAG_RETIRED = "retired"

CLAIMABLE_STATUSES = (TAG_UNCLAIMED, TAG_CLAIMABLE)

# Assignment target types
TARGET_PROFILE = "profile"
TARGET_URL = "url"

# Tag event types
EVENT_SCAN = "scan"
EVENT_CLAIM = "claim"
EVENT_RELEASE = "release"
EVENT_TARGET_CHANGE = "target_change"
EVENT_RETIRE = "retire"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class HardwareTagBatch(Base):
    """Manufacturing grouping of tags minted together."""

    __tablename__ = "hardware_tag_batches"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    label: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_hardware_tag_batches_created", "created_at", "id"),)


class HardwareTag(Base):
    """One physical NFC/QR unit."""

    __tablename__ = "hardware_tags"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    chip_uid: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    public_token: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    claim_code: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=TAG_UNCLAIMED)
    last_claimed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    batch_id: Mapped[Optional[str]] = mapped_column(
        TEXT, ForeignKey("hardware_tag_batches.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        # Stable export pagination
        Index("idx_hardware_tags_created", "created_at", "id"),
        Index("idx_hardware_tags_batch", "batch_id"),
    )

    @property
    def is_claimable(self) -> bool:
        return self.status in CLAIMABLE_STATUSES


class UserProfile(Base):
    """Public-facing profile owned by an account."""

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    handle: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    theme: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_user_profiles_user", "user_id", "is_active"),)


class ProfileLink(Base):
    """One link on a profile; an active override link wins tag redirects."""

    __tablename__ = "profile_links"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    title: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    url: Mapped[str] = mapped_column(TEXT, nullable=False)
    order_index: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)
    is_override: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    click_count: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_profile_links_profile_order", "profile_id", "order_index"),)


class TagAssignment(Base):
    """Binding of one claimed tag to one account and a destination."""

    __tablename__ = "tag_assignments"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tag_id: Mapped[str] = mapped_column(
        TEXT, ForeignKey("hardware_tags.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    profile_id: Mapped[Optional[str]] = mapped_column(
        TEXT, ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True
    )
    nickname: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    target_type: Mapped[str] = mapped_column(TEXT, nullable=False, default=TARGET_PROFILE)
    target_url: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    last_redirected_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        # Zero or one assignment per tag
        UniqueConstraint("tag_id", name="uq_tag_assignments_tag"),
        Index("idx_tag_assignments_user", "user_id", "created_at"),
    )


class TagEvent(Base):
    """Append-only log of scan/claim/release/target_change actions."""

    __tablename__ = "tag_events"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    tag_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    event_type: Mapped[str] = mapped_column(TEXT, nullable=False)
    event_meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_tag_events_tag_occurred", "tag_id", "occurred_at"),)


class AdminUser(Base):
    """Admin allowlist."""

    __tablename__ = "admin_users"

    user_id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
