"""Batch Mint / Export of tags for manufacturing.

Minting is all-or-nothing: the batch row and every tag row are written in
one transaction, so a failure never leaves a partial batch behind. Token or
claim-code collisions with existing rows roll the whole batch back and retry
with fresh codes.

Exports page through tags in fixed windows ordered by (created_at, id); the
order is total, so no row is skipped or repeated across pages.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from linket_api.db.models import TAG_UNCLAIMED, HardwareTag, HardwareTagBatch
from linket_api.db.repo_tags import BatchRepository, TagRepository
from linket_api.errors import InvalidInputError, NotFoundError, UpstreamError
from linket_api.tags.codes import (
    default_batch_label,
    format_claim_code,
    generate_claim_code,
    generate_public_token,
    label_for_filename,
    sanitize_label,
)

logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 20000
EXPORT_PAGE_SIZE = 1000
MAX_MINT_ATTEMPTS = 3
INSERT_CHUNK_SIZE = 1000


@dataclass
class MintResult:
    """A freshly minted batch and its rows (CSV-ready mappings)."""

    batch: HardwareTagBatch
    label: str
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        return len(self.rows)


def tag_url(site_origin: str, public_token: Optional[str]) -> str:
    """Public scan URL for a token ({origin}/l/{token})."""
    if not public_token:
        return ""
    return f"{site_origin.rstrip('/')}/l/{public_token}"


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_batch_label(batch: HardwareTagBatch) -> str:
    """Sanitized label, else the batch's creation date, else batch_{id prefix}."""
    label = sanitize_label(batch.label)
    if label:
        return label
    if batch.created_at is not None:
        return as_utc(batch.created_at).strftime("%Y-%m-%d")
    return f"batch_{batch.id[:8]}"


def utc_day_bounds(value: Optional[str]) -> tuple[datetime, datetime]:
    """UTC [start, end) of the day named by a label such as "2025-10-16".

    Raises:
        InvalidInputError: If the label does not start with a parseable date
    """
    if not value:
        day = datetime.now(timezone.utc).date()
    else:
        day = _parse_label_date(value)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _parse_label_date(value: str) -> date:
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            return date.fromisoformat(text[:10])
        except ValueError as e:
            raise InvalidInputError("Invalid batch label date.") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


class MintService:
    """Mint batches and export them as rows."""

    def __init__(self, db: Session, site_origin: str):
        self.db = db
        self.site_origin = site_origin
        self.batches = BatchRepository(db)
        self.tags = TagRepository(db)

    def mint(self, quantity: int, label: Optional[str] = None) -> MintResult:
        """Create a new batch of ``quantity`` unclaimed tags.

        Args:
            quantity: Number of tags, 1..20000
            label: Batch label (trimmed, at most 64 chars); defaults to today's date

        Returns:
            MintResult with one row per tag

        Raises:
            InvalidInputError: Quantity out of range
            UpstreamError: The store failed, or collisions persisted after retries
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidInputError("Quantity must be a whole number.")
        if quantity < MIN_QUANTITY or quantity > MAX_QUANTITY:
            raise InvalidInputError(
                f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}."
            )

        batch_label = sanitize_label(label) or default_batch_label()

        for attempt in range(1, MAX_MINT_ATTEMPTS + 1):
            try:
                result = self._mint_once(quantity, batch_label)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    "Mint collided with existing codes, retrying",
                    extra={"event": "mint.collision", "attempt": attempt},
                )
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(
                    f"Mint failed: {e}",
                    extra={"event": "mint.failed", "quantity": quantity},
                )
                raise UpstreamError(str(e) or "Mint error") from e

            logger.info(
                "Batch minted",
                extra={
                    "event": "mint.success",
                    "batch_id": result.batch.id,
                    "quantity": quantity,
                },
            )
            return result

        raise UpstreamError("Mint error: could not generate unique codes.")

    def _mint_once(self, quantity: int, batch_label: str) -> MintResult:
        batch = self.batches.create(batch_label)
        tokens = _unique_codes(generate_public_token, quantity)
        codes = _unique_codes(generate_claim_code, quantity)

        # Offset creation times so exports list tags in mint order
        base = datetime.now(timezone.utc)
        values = [
            {
                "id": str(uuid.uuid4()),
                "public_token": token,
                "claim_code": code,
                "status": TAG_UNCLAIMED,
                "batch_id": batch.id,
                "created_at": base + timedelta(microseconds=index),
                "updated_at": base,
            }
            for index, (token, code) in enumerate(zip(tokens, codes))
        ]
        for start in range(0, len(values), INSERT_CHUNK_SIZE):
            self.db.execute(insert(HardwareTag), values[start : start + INSERT_CHUNK_SIZE])

        rows = [
            {
                "id": value["id"],
                "batch_id": batch.id,
                "batch_label": batch_label,
                "public_token": value["public_token"],
                "url": tag_url(self.site_origin, value["public_token"]),
                "claim_code_display": format_claim_code(value["claim_code"]),
                "claim_code": value["claim_code"],
            }
            for value in values
        ]
        return MintResult(batch=batch, label=batch_label, rows=rows)

    def get_batch(self, batch_id: Optional[str]) -> HardwareTagBatch:
        """
        Raises:
            InvalidInputError: Blank batch id
            NotFoundError: Unknown batch
        """
        batch_id = (batch_id or "").strip()
        if not batch_id:
            raise InvalidInputError("Batch id is required.")
        batch = self.batches.get(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found.")
        return batch

    def export(self, batch_id: Optional[str] = None) -> Iterator[dict[str, Any]]:
        """Yield export rows for all tags, or for one batch.

        Raises:
            NotFoundError: Unknown batch (raised before the first row)
        """
        if batch_id is not None:
            batch = self.get_batch(batch_id)
            labels = {batch.id: resolve_batch_label(batch)}
        else:
            labels = {batch.id: resolve_batch_label(batch) for batch in self.batches.list_all()}
        return self._export_rows(batch_id, labels)

    def _export_rows(
        self,
        batch_id: Optional[str],
        labels: dict[str, str],
    ) -> Iterator[dict[str, Any]]:
        offset = 0
        while True:
            page = self.tags.page(offset, EXPORT_PAGE_SIZE, batch_id=batch_id)
            for tag in page:
                yield self._export_row(tag, labels)
            if len(page) < EXPORT_PAGE_SIZE:
                break
            offset += EXPORT_PAGE_SIZE

    def _export_row(self, tag: HardwareTag, labels: dict[str, str]) -> dict[str, Any]:
        batch_label = ""
        if tag.batch_id:
            batch_label = labels.get(tag.batch_id) or f"batch_{tag.batch_id[:8]}"
        return {
            "id": tag.id,
            "public_token": tag.public_token or "",
            "url": tag_url(self.site_origin, tag.public_token),
            "claim_code": tag.claim_code or "",
            "claim_code_display": format_claim_code(tag.claim_code),
            "batch_id": tag.batch_id or "",
            "batch_label": batch_label,
        }

    def next_batch_index(self, label: Optional[str] = None) -> tuple[int, str]:
        """Next batch number for the label's UTC day.

        Returns:
            (batches already created that day + 1, "YYYY-MM-DD")
        """
        start, end = utc_day_bounds(sanitize_label(label))
        count = self.batches.count_created_between(start, end)
        return count + 1, start.strftime("%Y-%m-%d")

    def batch_index_for_day(self, batch: HardwareTagBatch) -> Optional[int]:
        """1-based position of a batch among the batches created that UTC day."""
        if batch.created_at is None:
            return None
        start = datetime.combine(as_utc(batch.created_at).date(), time.min, tzinfo=timezone.utc)
        same_day = self.batches.list_created_between(start, start + timedelta(days=1))
        for index, row in enumerate(same_day, start=1):
            if row.id == batch.id:
                return index
        return None

    def batch_filename(self, batch: HardwareTagBatch, count: int) -> str:
        """linkets_{label}[_bNN]_{count}.csv"""
        index = self.batch_index_for_day(batch)
        suffix = f"_b{index:02d}" if index else ""
        return f"linkets_{label_for_filename(resolve_batch_label(batch))}{suffix}_{count}.csv"


def mint_filename(label: str, quantity: int) -> str:
    return f"linkets_{label_for_filename(label)}_{quantity}.csv"


def master_log_filename(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"linkets_master_log_{today.isoformat()}.csv"


def _unique_codes(generate, quantity: int) -> list[str]:
    seen: set[str] = set()
    while len(seen) < quantity:
        seen.add(generate())
    return list(seen)
