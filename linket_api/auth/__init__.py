"""Session authentication and admin authorization."""

from linket_api.auth.session_auth import SessionUser, get_current_user, require_admin

__all__ = ["SessionUser", "get_current_user", "require_admin"]
