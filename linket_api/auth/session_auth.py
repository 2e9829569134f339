"""Session authentication for dashboard, claim and admin endpoints.

Supabase JWT-based session auth.

FLOW:
1. The web app signs the user in with Supabase and holds the access token
2. It calls the API with Authorization: Bearer <jwt>
3. get_current_user validates the JWT with Supabase and returns SessionUser
4. Admin routes additionally require a row in admin_users

SECURITY:
- JWT signature verified by Supabase
- Admin membership read with the privileged data-store session
"""

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from supabase import Client

from linket_api.context import user_id_var
from linket_api.db.models import AdminUser
from linket_api.db.session import get_db
from linket_api.errors import ForbiddenError, UnauthorizedError, UpstreamError
from linket_api.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

# HTTPBearer scheme for session JWT
session_security = HTTPBearer(auto_error=False, description="Supabase JWT Session Token")


class SessionUser:
    """Authenticated caller."""

    def __init__(self, user_id: str, email: Optional[str] = None):
        self.user_id = user_id
        self.email = email

    def __repr__(self) -> str:
        return f"SessionUser(user_id={self.user_id!r})"


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    supabase: Client = Depends(get_supabase_client),
) -> SessionUser:
    """Validate the Bearer JWT and return the caller.

    Raises:
        UnauthorizedError: Missing, invalid or expired session token
        UnconfiguredError: Hosted auth not configured (from get_supabase_client)
    """
    if not credentials or not credentials.credentials:
        raise UnauthorizedError(headers={"WWW-Authenticate": "Bearer"})

    try:
        # Supabase client validates JWT signature and expiration
        user_response = supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.warning(
            f"JWT validation failed: {type(e).__name__}",
            extra={"event": "session.jwt.invalid"},
        )
        raise UnauthorizedError(headers={"WWW-Authenticate": "Bearer"}) from e

    if not user_response or not user_response.user:
        raise UnauthorizedError(headers={"WWW-Authenticate": "Bearer"})

    user = user_response.user
    user_id_var.set(user.id)
    logger.debug(
        "Session JWT validated",
        extra={"event": "session.jwt.validated", "user_id": user.id},
    )
    return SessionUser(user_id=user.id, email=getattr(user, "email", None))


def is_admin(db: Session, user_id: str) -> bool:
    stmt = select(AdminUser.user_id).where(AdminUser.user_id == user_id).limit(1)
    return db.execute(stmt).first() is not None


def require_admin(
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SessionUser:
    """Require the caller to be on the admin allowlist.

    Raises:
        ForbiddenError: Caller is not an admin
        UpstreamError: Allowlist could not be read
    """
    try:
        allowed = is_admin(db, user.user_id)
    except SQLAlchemyError as e:
        logger.error(
            f"Admin check failed: {e}",
            extra={"event": "admin.check_failed", "user_id": user.user_id},
        )
        raise UpstreamError("Admin check failed.") from e

    if not allowed:
        logger.warning(
            "Non-admin attempted admin operation",
            extra={"event": "admin.forbidden", "user_id": user.user_id},
        )
        raise ForbiddenError()
    return user
