"""
Session context for the entitlement engine.

Authentication itself lives outside this package. Whatever authenticates
the request (cookie session, gateway, JWT middleware) only has to leave
the user ID, and optionally the user's roles, on request.state:

    request.state.user_id = "u_123"
    request.state.roles = ["admin"]

SessionContextMiddleware does this for apps that keep the identity in a
Starlette session (request.scope["session"]).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("admin", "owner")


@dataclass(frozen=True)
class SessionUser:
    """Identity of the authenticated caller."""
    user_id: str
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return any(role.lower() in ADMIN_ROLES for role in self.roles)


class SessionContextMiddleware(BaseHTTPMiddleware):
    """
    Copy the session identity onto request.state.

    Reads "user_id" (or "userId") and "roles" from the Starlette session
    when one is installed; leaves request.state alone otherwise, so an
    upstream authentication middleware can set it instead.
    """

    async def dispatch(self, request: Request, call_next):
        session = request.scope.get("session") or {}
        user_id = session.get("user_id") or session.get("userId")
        if user_id and not getattr(request.state, "user_id", None):
            request.state.user_id = str(user_id)
            request.state.roles = list(session.get("roles") or [])
        return await call_next(request)


def get_current_user_id(request: Request) -> Optional[str]:
    """Return the authenticated user ID, or None for anonymous requests."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        return None
    return str(user_id)


def get_session_user(request: Request) -> Optional[SessionUser]:
    """Return the authenticated caller, or None for anonymous requests."""
    user_id = get_current_user_id(request)
    if user_id is None:
        return None
    roles = getattr(request.state, "roles", None) or []
    return SessionUser(user_id=user_id, roles=[str(r) for r in roles])


def require_session_user(request: Request) -> SessionUser:
    """
    FastAPI dependency requiring an authenticated caller.

    Raises 401 otherwise.
    """
    user = get_session_user(request)
    if user is None:
        logger.info("Unauthenticated request rejected", extra={
            "path": request.url.path
        })
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user


def verify_admin_role(request: Request) -> SessionUser:
    """
    Verify that the caller has an admin role.

    SECURITY: Admin endpoints require explicit admin role.
    """
    user = require_session_user(request)

    if not user.is_admin:
        logger.warning("Unauthorized admin access attempt", extra={
            "user_id": user.user_id,
            "roles": user.roles,
            "path": request.url.path
        })
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required"
        )

    return user
