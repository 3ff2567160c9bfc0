"""Session layer adapter: who is making the request."""

from fieldops.auth.session import (
    SessionUser,
    SessionContextMiddleware,
    get_current_user_id,
    get_session_user,
    require_session_user,
    verify_admin_role,
)

__all__ = [
    "SessionUser",
    "SessionContextMiddleware",
    "get_current_user_id",
    "get_session_user",
    "require_session_user",
    "verify_admin_role",
]
