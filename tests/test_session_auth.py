"""Tests for session and admin authentication dependencies."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import OperationalError

from linket_api.auth.session_auth import SessionUser, get_current_user, require_admin
from linket_api.context import user_id_var
from linket_api.errors import ForbiddenError, UnauthorizedError, UpstreamError


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_missing_credentials_is_401() -> None:
    with pytest.raises(UnauthorizedError) as exc_info:
        get_current_user(None, MagicMock())

    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


def test_invalid_jwt_is_401() -> None:
    supabase = MagicMock()
    supabase.auth.get_user.side_effect = RuntimeError("invalid JWT")

    with pytest.raises(UnauthorizedError):
        get_current_user(_bearer("bad"), supabase)


def test_empty_user_response_is_401() -> None:
    supabase = MagicMock()
    supabase.auth.get_user.return_value = SimpleNamespace(user=None)

    with pytest.raises(UnauthorizedError):
        get_current_user(_bearer("jwt"), supabase)


def test_valid_jwt_returns_user_and_sets_context() -> None:
    supabase = MagicMock()
    supabase.auth.get_user.return_value = SimpleNamespace(
        user=SimpleNamespace(id="user-1", email="a@example.com")
    )
    token = user_id_var.set("")
    try:
        user = get_current_user(_bearer("jwt"), supabase)
        assert user_id_var.get() == "user-1"
    finally:
        user_id_var.reset(token)

    assert user.user_id == "user-1"
    assert user.email == "a@example.com"
    supabase.auth.get_user.assert_called_once_with("jwt")


def test_require_admin_allows_allowlisted(db_session, factory) -> None:
    factory.admin("admin-1")

    assert require_admin(SessionUser("admin-1"), db_session).user_id == "admin-1"


def test_require_admin_rejects_others(db_session) -> None:
    with pytest.raises(ForbiddenError):
        require_admin(SessionUser("someone"), db_session)


def test_require_admin_store_failure_is_upstream() -> None:
    db = MagicMock()
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

    with pytest.raises(UpstreamError):
        require_admin(SessionUser("admin-1"), db)
