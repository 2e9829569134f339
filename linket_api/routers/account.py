"""Account deletion.

Deleting an account releases every tag it holds (tags go back to unclaimed,
they are never deleted) and removes the hosted auth user. The release is
committed only after the auth user is gone, so a failed deletion leaves the
tags with their owner.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from supabase import Client

from linket_api.auth.session_auth import SessionUser, get_current_user
from linket_api.cache_purge import HttpCachePurger, NoOpCachePurger, get_cache_purger
from linket_api.db.session import get_db
from linket_api.errors import UpstreamError
from linket_api.schemas import AccountDeleteResponse
from linket_api.supabase_client import get_supabase_admin_client
from linket_api.tags.claims import ClaimService
from linket_api.tasks import DetachedTaskRunner, get_task_runner

router = APIRouter(prefix="/api/account", tags=["account"])
logger = logging.getLogger(__name__)


@router.post("/delete", response_model=AccountDeleteResponse)
async def delete_account(
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(get_current_user),
    admin_client: Client = Depends(get_supabase_admin_client),
    db: Session = Depends(get_db),
    purger: HttpCachePurger | NoOpCachePurger = Depends(get_cache_purger),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> AccountDeleteResponse:
    """Delete the auth user and release the caller's tags in one step."""

    def delete_auth_user() -> None:
        try:
            admin_client.auth.admin.delete_user(user.user_id)
        except Exception as e:
            logger.error(
                f"Auth user deletion failed: {type(e).__name__}",
                extra={"event": "account.delete_failed", "user_id": user.user_id},
            )
            raise UpstreamError("Unable to delete account. Please try again.") from e

    released = ClaimService(db).release_all_for_user(user.user_id, before_commit=delete_auth_user)
    for tag in released:
        runner.schedule(background_tasks, "cache_purge", purger.purge, tag.public_token)

    logger.info(
        "Account deleted",
        extra={
            "event": "account.deleted",
            "user_id": user.user_id,
            "released_tags": len(released),
        },
    )
    return AccountDeleteResponse(released_tags=len(released))
