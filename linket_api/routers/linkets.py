"""Claim and dashboard endpoints for tag owners.

AUTHENTICATION:
- Session-based: Supabase JWT (Authorization: Bearer <jwt>)

ERRORS:
- 400 invalid input, 401 no session, 403 not owner, 404 unknown code,
  409 already claimed, 429 too many claim attempts, 500 unconfigured/upstream
"""

import logging

import redis
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from linket_api.auth.session_auth import SessionUser, get_current_user
from linket_api.cache_purge import HttpCachePurger, NoOpCachePurger, get_cache_purger
from linket_api.context import tag_id_var
from linket_api.db.session import get_db
from linket_api.errors import TooManyRequestsError
from linket_api.rate_limiter import NoOpRateLimiter, RateLimiter, get_rate_limiter
from linket_api.schemas import (
    AssignmentUpdateRequest,
    AssignmentUpdateResponse,
    ClaimRequest,
    ClaimResponse,
    DashboardLinketsResponse,
    LinketSummary,
    OkResponse,
    ProfileSummary,
)
from linket_api.tags.claims import ClaimService
from linket_api.tags.profiles import ProfileResolver
from linket_api.tasks import DetachedTaskRunner, get_task_runner
from linket_api.utils.security import client_ip_from_headers

router = APIRouter(prefix="/api", tags=["linkets"])
logger = logging.getLogger(__name__)

CLAIM_SCOPE = "claim"


def enforce_claim_rate_limit(
    request: Request,
    limiter: RateLimiter | NoOpRateLimiter = Depends(get_rate_limiter),
) -> None:
    """Sliding-window limit on claim attempts, checked before any store access.

    Raises:
        TooManyRequestsError: Window exceeded for this client
    """
    client_ip = client_ip_from_headers(
        request.headers, request.client.host if request.client else None
    )
    try:
        result = limiter.check_rate_limit(client_ip, CLAIM_SCOPE)
    except redis.RedisError as e:
        # Rate-limit store outage must not block claims
        logger.warning(
            f"Rate limit check failed, allowing request: {type(e).__name__}",
            extra={"event": "rate_limit.store_failed", "scope": CLAIM_SCOPE},
        )
        return
    if not result.allowed:
        raise TooManyRequestsError(retry_after=result.reset, headers=result.headers())


@router.post("/linkets/claim", response_model=ClaimResponse)
async def claim_linket(
    body: ClaimRequest,
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(get_current_user),
    _: None = Depends(enforce_claim_rate_limit),
    db: Session = Depends(get_db),
    purger: HttpCachePurger | NoOpCachePurger = Depends(get_cache_purger),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> ClaimResponse:
    """Claim a tag for the signed-in account.

    Body: {claimCode | chipUid | token, profileId?, nickname?}
    """
    result = ClaimService(db).claim(
        body.code,
        user.user_id,
        profile_id=body.profile_id,
        nickname=body.nickname,
    )
    tag_id_var.set(result.tag.id)
    runner.schedule(background_tasks, "cache_purge", purger.purge, result.tag.public_token)
    return ClaimResponse(assignment_id=result.assignment.id)


@router.get("/dashboard/linkets", response_model=DashboardLinketsResponse)
async def list_linkets(
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DashboardLinketsResponse:
    """The caller's claimed tags and profiles."""
    claims = ClaimService(db).list_for_user(user.user_id)
    profiles = ProfileResolver(db).list_profiles(user.user_id)

    return DashboardLinketsResponse(
        linkets=[
            LinketSummary(
                assignment_id=item.assignment.id,
                tag_id=item.tag.id,
                token=item.tag.public_token,
                status=item.tag.status,
                nickname=item.assignment.nickname,
                target_type=item.assignment.target_type,
                target_url=item.assignment.target_url,
                profile_id=item.assignment.profile_id,
                last_redirected_at=(
                    item.assignment.last_redirected_at.isoformat()
                    if item.assignment.last_redirected_at
                    else None
                ),
            )
            for item in claims
        ],
        profiles=[
            ProfileSummary(
                id=profile.id,
                handle=profile.handle,
                name=profile.name,
                is_active=profile.is_active,
            )
            for profile in profiles
        ],
    )


@router.patch("/dashboard/linkets/{assignment_id}", response_model=AssignmentUpdateResponse)
async def update_linket(
    assignment_id: str,
    body: AssignmentUpdateRequest,
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    purger: HttpCachePurger | NoOpCachePurger = Depends(get_cache_purger),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> AssignmentUpdateResponse:
    """Edit nickname or destination; purges the token's cached redirect."""
    result = ClaimService(db).update(assignment_id, user.user_id, body.changes())
    if result.tag is not None:
        runner.schedule(background_tasks, "cache_purge", purger.purge, result.tag.public_token)
    return AssignmentUpdateResponse(assignment_id=result.assignment.id)


@router.delete("/dashboard/linkets/{assignment_id}", response_model=OkResponse)
async def release_linket(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    purger: HttpCachePurger | NoOpCachePurger = Depends(get_cache_purger),
    runner: DetachedTaskRunner = Depends(get_task_runner),
) -> OkResponse:
    """Release a tag back to unclaimed."""
    tag = ClaimService(db).release(assignment_id, user.user_id)
    runner.schedule(background_tasks, "cache_purge", purger.purge, tag.public_token)
    return OkResponse()
