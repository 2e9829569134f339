"""Admin mint/export and tag lifecycle endpoints.

All routes require a session and admin_users membership. Mint and export
responses are CSV attachments for the manufacturing pipeline. This is an
internal tool, so data-store errors are passed through verbatim (HTTP 500).
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linket_api.auth.session_auth import SessionUser, require_admin
from linket_api.cache_purge import HttpCachePurger, NoOpCachePurger, get_cache_purger
from linket_api.config.settings import Settings, get_settings
from linket_api.db.session import get_db
from linket_api.errors import InvalidInputError, UpstreamError
from linket_api.schemas import NextBatchResponse, TagRetireResponse
from linket_api.tags.claims import ClaimService
from linket_api.tags.csv_export import EXPORT_COLUMNS, MINT_COLUMNS, to_csv
from linket_api.tags.minting import MintService, master_log_filename, mint_filename
from linket_api.tasks import DetachedTaskRunner, get_task_runner

router = APIRouter(prefix="/api/admin/mint", tags=["admin"])
tags_router = APIRouter(prefix="/api/admin/tags", tags=["admin"])
logger = logging.getLogger(__name__)


def csv_attachment(body: str, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )


def parse_quantity(raw: Optional[str]) -> int:
    """
    Raises:
        InvalidInputError: Missing or non-integer quantity
    """
    try:
        return int((raw or "").strip())
    except ValueError as e:
        raise InvalidInputError("Quantity must be a whole number.") from e


@router.get("")
async def mint_batch(
    qty: Optional[str] = Query(None),
    label: Optional[str] = Query(None),
    admin: SessionUser = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> Response:
    """Mint a new batch and download it as CSV."""
    quantity = parse_quantity(qty)
    result = MintService(db, settings.site_origin).mint(quantity, label)

    logger.info(
        "Admin minted batch",
        extra={
            "event": "admin.mint",
            "user_id": admin.user_id,
            "batch_id": result.batch.id,
            "quantity": result.quantity,
        },
    )
    return csv_attachment(
        to_csv(MINT_COLUMNS, result.rows),
        mint_filename(result.label, result.quantity),
    )


@router.get("/batch/{batch_id}")
async def export_batch(
    batch_id: str,
    admin: SessionUser = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> Response:
    """Download one batch as CSV."""
    service = MintService(db, settings.site_origin)
    try:
        batch = service.get_batch(batch_id)
        rows = list(service.export(batch.id))
        filename = service.batch_filename(batch, len(rows))
    except SQLAlchemyError as e:
        raise UpstreamError(str(e) or "Unable to load batch tags.") from e

    return csv_attachment(to_csv(EXPORT_COLUMNS, rows), filename)


@router.get("/master-log")
async def export_master_log(
    admin: SessionUser = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> Response:
    """Download every tag ever minted as CSV."""
    try:
        rows = list(MintService(db, settings.site_origin).export())
    except SQLAlchemyError as e:
        raise UpstreamError(str(e) or "Unable to load tags.") from e

    return csv_attachment(to_csv(EXPORT_COLUMNS, rows), master_log_filename())


@router.get("/next-batch", response_model=NextBatchResponse)
async def next_batch(
    label: Optional[str] = Query(None),
    admin: SessionUser = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> NextBatchResponse:
    """Index the next batch minted today (or on the label's date) would get."""
    try:
        next_index, day = MintService(db, settings.site_origin).next_batch_index(label)
    except SQLAlchemyError as e:
        raise UpstreamError(str(e) or "Unable to read batches.") from e
    return NextBatchResponse(next_index=next_index, date=day)


@tags_router.post("/{tag_id}/retire", response_model=TagRetireResponse)
async def retire_tag(
    tag_id: str,
    background_tasks: BackgroundTasks,
    admin: SessionUser = Depends(require_admin),
    db: Session = Depends(get_db),
    purger: HttpCachePurger | NoOpCachePurger = Depends(get_cache_purger),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> TagRetireResponse:
    """Retire a tag; it keeps resolving but can no longer be claimed."""
    tag = ClaimService(db).retire(tag_id, admin.user_id)
    runner.schedule(background_tasks, "cache_purge", purger.purge, tag.public_token)
    return TagRetireResponse(tag_id=tag.id, status=tag.status)
