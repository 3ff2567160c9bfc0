"""
Admin Plan Override API routes.

SECURITY: All routes require admin role verification.
An override customises one user's entitlements on top of a base plan.
Every write invalidates that user's cached policy.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from fieldops.auth.session import SessionUser, verify_admin_role
from fieldops.database.session import get_db_session
from fieldops.services.plan_override_service import (
    BasePlanNotFoundError,
    PlanOverrideConflictError,
    PlanOverrideInfo,
    PlanOverrideNotFoundServiceError,
    PlanOverrideService,
    PlanOverrideServiceError,
    PlanOverrideValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin-plan-overrides"])


class CreatePlanOverrideRequest(BaseModel):
    """Request to create a user's plan override."""
    user_id: str = Field(..., description="User the override applies to", min_length=1, max_length=255)
    plan_id: str = Field(..., description="Base plan the override layers on", min_length=1, max_length=255)
    features: Optional[Dict[str, Any]] = Field(None, description="Features document merged over the base plan")
    limits: Optional[Dict[str, Any]] = Field(None, description="Limits applied after the features document")
    is_active: bool = Field(True, description="Inactive overrides are ignored")
    notes: Optional[str] = Field(None, description="Admin notes", max_length=2000)

    @field_validator("user_id", "plan_id")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Identifier must not be blank")
        return v


class UpdatePlanOverrideRequest(BaseModel):
    """Request to update an override. Only fields that are sent are changed."""
    plan_id: Optional[str] = Field(None, description="New base plan", min_length=1, max_length=255)
    features: Optional[Dict[str, Any]] = Field(None, description="New features document (null clears it)")
    limits: Optional[Dict[str, Any]] = Field(None, description="New limits document (null clears it)")
    is_active: Optional[bool] = Field(None, description="New active status")
    notes: Optional[str] = Field(None, description="New admin notes", max_length=2000)


class PlanOverrideResponse(BaseModel):
    """Plan override response."""
    id: str
    user_id: str
    plan_id: str
    plan_name: Optional[str]
    features: Dict[str, Any]
    limits: Dict[str, Any]
    is_active: bool
    notes: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


class PlanOverridesListResponse(BaseModel):
    """Paginated list of overrides."""
    overrides: List[PlanOverrideResponse]
    total: int
    limit: int
    offset: int


def _to_response(override: PlanOverrideInfo) -> PlanOverrideResponse:
    return PlanOverrideResponse(
        id=override.id,
        user_id=override.user_id,
        plan_id=override.plan_id,
        plan_name=override.plan_name,
        features=override.features,
        limits=override.limits,
        is_active=override.is_active,
        notes=override.notes,
        created_at=override.created_at.isoformat() if override.created_at else None,
        updated_at=override.updated_at.isoformat() if override.updated_at else None
    )


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)


def _validation_error(e: PlanOverrideValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": str(e), "errors": e.errors}
    )


def _server_error(action: str, admin: SessionUser, e: Exception, **context: Any) -> HTTPException:
    logger.error(f"Failed to {action} plan override", extra={
        "user_id": admin.user_id,
        "error": str(e),
        **context
    })
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action} plan override"
    )


def get_plan_override_service(db_session: Session = Depends(get_db_session)) -> PlanOverrideService:
    """Get plan override service instance."""
    return PlanOverrideService(db_session)


@router.get("/plan-overrides", response_model=PlanOverridesListResponse)
def list_plan_overrides(
    plan_id: Optional[str] = Query(None, description="Only overrides on this base plan"),
    include_inactive: bool = Query(True, description="Include inactive overrides"),
    limit: int = Query(100, ge=1, le=500, description="Maximum overrides to return"),
    offset: int = Query(0, ge=0, description="Number of overrides to skip"),
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """
    List plan overrides with pagination.

    Requires admin role.
    """
    logger.info("Admin listing plan overrides", extra={
        "user_id": admin.user_id,
        "plan_id": plan_id
    })

    overrides, total = service.list_overrides(
        plan_id=plan_id,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset
    )

    return PlanOverridesListResponse(
        overrides=[_to_response(o) for o in overrides],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/plan-overrides/{override_id}", response_model=PlanOverrideResponse)
def get_plan_override(
    override_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """Get a plan override by ID."""
    try:
        return _to_response(service.get_override(override_id))
    except PlanOverrideNotFoundServiceError as e:
        raise _not_found(str(e))


@router.get("/users/{user_id}/plan-override", response_model=PlanOverrideResponse)
def get_user_plan_override(
    user_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """Get the override configured for a user, active or not."""
    try:
        return _to_response(service.get_override_for_user(user_id))
    except PlanOverrideNotFoundServiceError as e:
        raise _not_found(str(e))


@router.post("/plan-overrides", response_model=PlanOverrideResponse, status_code=status.HTTP_201_CREATED)
def create_plan_override(
    override_request: CreatePlanOverrideRequest,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """
    Create a plan override for a user.

    Requires admin role. A user has at most one override; creating a
    second one returns 409.
    """
    logger.info("Admin creating plan override", extra={
        "user_id": admin.user_id,
        "target_user_id": override_request.user_id,
        "plan_id": override_request.plan_id
    })

    try:
        override = service.create_override(**override_request.model_dump())
    except PlanOverrideValidationError as e:
        raise _validation_error(e)
    except BasePlanNotFoundError as e:
        raise _not_found(str(e))
    except PlanOverrideConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PlanOverrideServiceError as e:
        raise _server_error("create", admin, e, target_user_id=override_request.user_id)

    return _to_response(override)


@router.put("/plan-overrides/{override_id}", response_model=PlanOverrideResponse)
def update_plan_override(
    override_id: str,
    override_request: UpdatePlanOverrideRequest,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """
    Update a plan override.

    Requires admin role.
    """
    logger.info("Admin updating plan override", extra={
        "user_id": admin.user_id,
        "override_id": override_id
    })

    try:
        override = service.update_override(override_id, override_request.model_dump(exclude_unset=True))
    except PlanOverrideNotFoundServiceError as e:
        raise _not_found(str(e))
    except BasePlanNotFoundError as e:
        raise _not_found(str(e))
    except PlanOverrideValidationError as e:
        raise _validation_error(e)
    except PlanOverrideServiceError as e:
        raise _server_error("update", admin, e, override_id=override_id)

    return _to_response(override)


@router.post("/plan-overrides/{override_id}/toggle", response_model=PlanOverrideResponse)
def toggle_plan_override(
    override_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """Flip an override between active and inactive."""
    try:
        override = service.toggle_override(override_id)
    except PlanOverrideNotFoundServiceError as e:
        raise _not_found(str(e))
    except PlanOverrideServiceError as e:
        raise _server_error("toggle", admin, e, override_id=override_id)

    logger.info("Plan override toggled", extra={
        "user_id": admin.user_id,
        "override_id": override_id,
        "is_active": override.is_active
    })
    return _to_response(override)


@router.delete("/plan-overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan_override(
    override_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    service: PlanOverrideService = Depends(get_plan_override_service)
):
    """
    Delete a plan override.

    Requires admin role. The user falls back to the base plan immediately.
    """
    logger.info("Admin deleting plan override", extra={
        "user_id": admin.user_id,
        "override_id": override_id
    })

    try:
        service.delete_override(override_id)
    except PlanOverrideNotFoundServiceError as e:
        raise _not_found(str(e))

    return Response(status_code=status.HTTP_204_NO_CONTENT)
