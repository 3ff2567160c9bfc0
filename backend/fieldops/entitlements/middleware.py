"""
Entitlement enforcement for FastAPI routes.

Provides composable route guards (FastAPI dependencies):
- require_feature(feature_id)
- require_page_access(page_id, level="view")
- require_permission(permission_id)
- check_feature_limit(resource, usage_counter=None)
- add_plan_info: X-Plan-ID / X-Plan-Features response headers

and install_entitlement_handlers(app), which renders denials as
top-level JSON:

    401 {"error": "Not authenticated"}
    403 {"error": ..., "feature"|"page"|"permission": id, "upgrade": true}
    403 {"error": ..., "feature": resource, "current": n, "limit": m, "upgrade": true}
    500 {"error": "Internal server error"}

The effective policy is resolved at most once per request: every guard
depends on get_request_policy, which FastAPI caches per request, and the
result is also kept on request.state.entitlement_policy.

Failures never allow: store errors and unexpected exceptions are logged
and answered with an opaque 500.

Usage:
    @router.post(
        "/api/collaborators",
        dependencies=[
            Depends(require_feature("collaborators")),
            Depends(check_feature_limit("collaborators")),
        ],
    )
    def create_collaborator(...):
        ...
"""

import json
import logging
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fieldops.auth.session import get_current_user_id
from fieldops.config.entitlements import EntitlementSettings, get_entitlement_settings
from fieldops.database.session import get_db_session
from fieldops.entitlements.errors import (
    EntitlementDeniedError,
    EntitlementHTTPError,
    EntitlementInternalError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from fieldops.entitlements.models import (
    NOT_SUBSCRIBED,
    EffectivePolicy,
    LimitCheck,
    PageAccess,
    PolicyResult,
    UNLIMITED,
)
from fieldops.entitlements.policy import (
    check_limit,
    get_limit,
    get_page_access,
    has_permission,
    is_feature_enabled,
    limit_name_for,
    resource_for,
)
from fieldops.entitlements.service import EntitlementEvaluationError, EntitlementService
from fieldops.entitlements.usage import UsageCounter, get_usage_registry

logger = logging.getLogger(__name__)

_STATE_ATTR = "entitlement_policy"


# ---------------------------------------------------------------------------
# Per-request policy resolution
# ---------------------------------------------------------------------------

def get_entitlement_service(db_session: Session = Depends(get_db_session)) -> EntitlementService:
    """Get entitlement service instance."""
    return EntitlementService(db_session)


def _plan_id(policy: PolicyResult) -> Optional[str]:
    return policy.plan_id if isinstance(policy, EffectivePolicy) else None


def _resolve_for_request(request: Request, user_id: str, service: EntitlementService) -> PolicyResult:
    cached = getattr(request.state, _STATE_ATTR, None)
    if cached is not None:
        return cached

    policy = service.resolve_effective_policy(user_id)
    setattr(request.state, _STATE_ATTR, policy)
    return policy


def get_optional_request_policy(
    request: Request,
    service: EntitlementService = Depends(get_entitlement_service),
) -> Optional[PolicyResult]:
    """
    Resolve the caller's policy, or None for anonymous requests.

    Raises:
        EntitlementInternalError: The policy could not be resolved
    """
    user_id = get_current_user_id(request)
    if user_id is None:
        return None

    try:
        return _resolve_for_request(request, user_id, service)
    except StoreUnavailableError as exc:
        logger.error(
            "Entitlement check failed - configuration store unavailable",
            extra={
                "user_id": user_id,
                "operation": exc.operation,
                "path": request.url.path,
            }
        )
        raise EntitlementInternalError() from exc
    except EntitlementEvaluationError as exc:
        logger.error(
            "Entitlement check failed - evaluation error",
            extra={"user_id": user_id, "path": request.url.path, **exc.to_dict()}
        )
        raise EntitlementInternalError() from exc


def get_authenticated_user_id(request: Request) -> str:
    """
    Return the caller's user ID or raise UnauthenticatedError.

    Holds no database dependency, so anonymous requests are rejected
    before a session is opened.
    """
    user_id = get_current_user_id(request)
    if user_id is None:
        raise UnauthenticatedError()
    return user_id


def get_request_policy(
    user_id: str = Depends(get_authenticated_user_id),
    policy: Optional[PolicyResult] = Depends(get_optional_request_policy),
) -> PolicyResult:
    """
    Resolve the caller's policy, requiring authentication.

    The identity is checked first; FastAPI solves sub-dependencies in
    parameter order and stops at the first error.

    Raises:
        UnauthenticatedError: No user on the request
        EntitlementInternalError: The policy could not be resolved
    """
    return policy


def _deny(request: Request, policy: PolicyResult, error: EntitlementDeniedError) -> EntitlementDeniedError:
    logger.info(
        "Entitlement denied",
        extra={
            "user_id": get_current_user_id(request),
            "plan_id": _plan_id(policy),
            "subscribed": policy is not NOT_SUBSCRIBED,
            "check": error.context_key,
            "check_id": error.context_id,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return error


def _internal_error(request: Request, guard: str, exc: Exception) -> EntitlementInternalError:
    logger.critical(
        "Entitlement guard failed unexpectedly",
        extra={
            "alert_type": "entitlement_guard_failed",
            "guard": guard,
            "user_id": get_current_user_id(request),
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_detail": str(exc),
        },
        exc_info=True,
    )
    return EntitlementInternalError()


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def require_feature(feature_id: str) -> Callable:
    """
    Guard: the feature flag must not be disabled.

    Absent flags are enabled. Unsubscribed users pass only for features on
    the public allow-list.
    """

    def check_feature(
        request: Request,
        policy: PolicyResult = Depends(get_request_policy),
        settings: EntitlementSettings = Depends(get_entitlement_settings),
    ) -> PolicyResult:
        try:
            enabled = is_feature_enabled(policy, feature_id, settings)
        except Exception as exc:
            raise _internal_error(request, "require_feature", exc)

        if not enabled:
            raise _deny(request, policy, EntitlementDeniedError(
                "Feature not available in your plan",
                context_key="feature",
                context_id=feature_id,
                plan_id=_plan_id(policy),
            ))
        return policy

    return check_feature


def require_page_access(page_id: str, level: str = "view") -> Callable:
    """
    Guard: the page must be accessible at the required level.

    Args:
        page_id: Page identifier
        level: "view" (default) or "edit"
    """
    required = PageAccess(level)
    if required == PageAccess.NONE:
        raise ValueError("require_page_access needs level 'view' or 'edit'")

    def check_page_access(
        request: Request,
        policy: PolicyResult = Depends(get_request_policy),
        settings: EntitlementSettings = Depends(get_entitlement_settings),
    ) -> PageAccess:
        try:
            granted = get_page_access(policy, page_id, settings)
        except Exception as exc:
            raise _internal_error(request, "require_page_access", exc)

        if granted == PageAccess.NONE:
            raise _deny(request, policy, EntitlementDeniedError(
                "Page not available in your plan",
                context_key="page",
                context_id=page_id,
                plan_id=_plan_id(policy),
            ))
        if not granted.satisfies(required):
            raise _deny(request, policy, EntitlementDeniedError(
                "Editing not allowed in your plan",
                context_key="page",
                context_id=page_id,
                plan_id=_plan_id(policy),
            ))
        return granted

    return check_page_access


def require_permission(permission_id: str) -> Callable:
    """Guard: the permission must be granted explicitly."""

    def check_permission(
        request: Request,
        policy: PolicyResult = Depends(get_request_policy),
    ) -> PolicyResult:
        try:
            allowed = has_permission(policy, permission_id)
        except Exception as exc:
            raise _internal_error(request, "require_permission", exc)

        if not allowed:
            raise _deny(request, policy, EntitlementDeniedError(
                "Operation not allowed in your plan",
                context_key="permission",
                context_id=permission_id,
                plan_id=_plan_id(policy),
            ))
        return policy

    return check_permission


def check_feature_limit(resource: str, usage_counter: Optional[UsageCounter] = None) -> Callable:
    """
    Guard: current usage of a resource must be below its limit.

    The limit key is "max_<resource>" unless resource already starts with
    "max_". Usage is read from usage_counter, or from the counter
    registered for the resource. The guard never increments usage and does
    not count at all when the limit is unlimited.

    Args:
        resource: Resource name ("clients") or limit key ("max_clients")
        usage_counter: Optional explicit counter (db_session, user_id) -> int
    """
    limit_name = limit_name_for(resource)
    resource_name = resource_for(limit_name)

    def check_limit_dependency(
        request: Request,
        policy: PolicyResult = Depends(get_request_policy),
        db_session: Session = Depends(get_db_session),
    ) -> LimitCheck:
        if policy is NOT_SUBSCRIBED:
            raise _deny(request, policy, EntitlementDeniedError(
                f"Limit reached for {resource_name}",
                context_key="feature",
                context_id=resource_name,
                current=0,
                limit=0,
            ))

        try:
            limit = get_limit(policy, limit_name)
            if limit is None or limit == UNLIMITED:
                return LimitCheck(allowed=True, current=0, limit=UNLIMITED)

            if usage_counter is not None:
                usage = int(usage_counter(db_session, policy.user_id))
            else:
                usage = get_usage_registry().count(resource_name, db_session, policy.user_id)

            result = check_limit(policy, limit_name, usage)
        except EntitlementHTTPError:
            raise
        except Exception as exc:
            raise _internal_error(request, "check_feature_limit", exc)

        if not result.allowed:
            raise _deny(request, policy, EntitlementDeniedError(
                f"Limit reached for {resource_name}",
                context_key="feature",
                context_id=resource_name,
                current=result.current,
                limit=result.limit,
                plan_id=policy.plan_id,
            ))
        return result

    return check_limit_dependency


# ---------------------------------------------------------------------------
# Plan headers
# ---------------------------------------------------------------------------

def add_plan_info(
    request: Request,
    response: Response,
    settings: EntitlementSettings = Depends(get_entitlement_settings),
    service: EntitlementService = Depends(get_entitlement_service),
) -> None:
    """
    Attach X-Plan-ID and X-Plan-Features headers for subscribed callers.

    Never fails the request: resolution errors are logged and the headers
    are skipped. Headers are only carried when the route returns data
    rather than a Response object.

    Depends on the database session; on routes that must answer 401 to
    anonymous callers, declare it after get_request_policy.
    """
    if not settings.expose_plan_headers:
        return

    user_id = get_current_user_id(request)
    if user_id is None:
        return

    try:
        policy = _resolve_for_request(request, user_id, service)
    except (StoreUnavailableError, EntitlementEvaluationError) as exc:
        logger.warning(
            "Skipping plan headers - policy unavailable",
            extra={"user_id": user_id, "error": str(exc), "path": request.url.path}
        )
        return

    if not isinstance(policy, EffectivePolicy):
        return

    response.headers["X-Plan-ID"] = policy.plan_id
    response.headers["X-Plan-Features"] = json.dumps(policy.features.to_dict(), sort_keys=True)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def entitlement_error_handler(request: Request, exc: EntitlementHTTPError) -> JSONResponse:
    """Render entitlement errors with their payload as the JSON body."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=getattr(exc, "headers", None),
    )


def install_entitlement_handlers(app: FastAPI) -> None:
    """Register the entitlement exception handlers on an app."""
    app.add_exception_handler(EntitlementHTTPError, entitlement_error_handler)
