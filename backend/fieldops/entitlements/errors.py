"""
Structured error classes for entitlement enforcement.

HTTP-facing errors subclass HTTPException so routes behave sensibly even
without the dedicated handlers; install_entitlement_handlers() renders their
payload at the top level of the JSON body.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""
    pass


class StoreUnavailableError(EntitlementError):
    """
    Raised when the configuration store cannot be read.

    Never results in an allow: guards turn it into a 500.
    """

    def __init__(self, operation: str, user_id: Optional[str] = None, cause: Optional[Exception] = None):
        self.operation = operation
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Configuration store unavailable during {operation}: {cause}")


class UsageCounterNotRegisteredError(EntitlementError):
    """Raised when a finite limit is checked for a resource nobody counts."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"No usage counter registered for resource '{resource}'")


class EntitlementHTTPError(EntitlementError, HTTPException):
    """Base for errors rendered directly as HTTP responses."""

    def __init__(self, status_code: int, payload: Dict[str, Any]):
        self.payload = payload
        super().__init__(status_code=status_code, detail=payload)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return dict(self.payload)


class UnauthenticatedError(EntitlementHTTPError):
    """No user identity on the request."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, {"error": message})


class EntitlementDeniedError(EntitlementHTTPError):
    """
    Raised when a feature, page, permission or limit check fails.

    The payload shape is stable for clients:
        {"error": ..., "<feature|page|permission>": id, "upgrade": true}
    Limit denials also carry "current" and "limit".
    """

    def __init__(
        self,
        message: str,
        context_key: str,
        context_id: str,
        current: Optional[int] = None,
        limit: Optional[int] = None,
        plan_id: Optional[str] = None,
    ):
        """
        Initialize entitlement denied error.

        Args:
            message: Human-readable reason
            context_key: "feature", "page" or "permission"
            context_id: Identifier of the denied feature/page/permission
            current: Current usage (limit denials only)
            limit: Configured limit (limit denials only)
            plan_id: Resolved plan ID, for logging only
        """
        self.message = message
        self.context_key = context_key
        self.context_id = context_id
        self.current = current
        self.limit = limit
        self.plan_id = plan_id

        payload: Dict[str, Any] = {"error": message, context_key: context_id}
        if limit is not None:
            payload["current"] = current
            payload["limit"] = limit
        payload["upgrade"] = True

        super().__init__(status.HTTP_403_FORBIDDEN, payload)


class EntitlementInternalError(EntitlementHTTPError):
    """Opaque 500 returned when an entitlement check cannot be evaluated."""

    def __init__(self):
        super().__init__(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"error": "Internal server error"},
        )
