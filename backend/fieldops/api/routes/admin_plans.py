"""
Admin Plans API routes for plan management.

SECURITY: All routes require admin role verification.
These endpoints allow creating, editing, and retiring subscription plans.
Every write invalidates all cached policies, so changes apply instantly.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from fieldops.auth.session import SessionUser, verify_admin_role
from fieldops.database.session import get_db_session
from fieldops.services.plan_service import (
    PlanInfo,
    PlanService,
    PlanServiceError,
    PlanNotFoundServiceError,
    PlanValidationError,
    PlanInUseServiceError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/plans", tags=["admin-plans"])


# Request/Response models

class CreatePlanRequest(BaseModel):
    """Request to create a new plan."""
    name: str = Field(..., description="Unique plan name (e.g., 'Pro')", min_length=1, max_length=100)
    description: Optional[str] = Field(None, description="Plan description", max_length=2000)
    price_monthly_cents: Optional[int] = Field(None, description="Monthly price in cents", ge=0)
    price_yearly_cents: Optional[int] = Field(None, description="Yearly price in cents", ge=0)
    monthly_duration_days: Optional[int] = Field(30, description="Monthly period in days (null = unlimited)", ge=1)
    yearly_duration_days: Optional[int] = Field(365, description="Yearly period in days (null = unlimited)", ge=1)
    is_active: bool = Field(True, description="Whether plan is available for subscriptions")
    is_free: bool = Field(False, description="Free tier flag")
    features: Optional[Dict[str, Any]] = Field(None, description="Features document")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class UpdatePlanRequest(BaseModel):
    """Request to update a plan. Only fields that are sent are changed."""
    name: Optional[str] = Field(None, description="New plan name", min_length=1, max_length=100)
    description: Optional[str] = Field(None, description="New description", max_length=2000)
    price_monthly_cents: Optional[int] = Field(None, description="New monthly price in cents", ge=0)
    price_yearly_cents: Optional[int] = Field(None, description="New yearly price in cents", ge=0)
    monthly_duration_days: Optional[int] = Field(None, description="New monthly period in days", ge=1)
    yearly_duration_days: Optional[int] = Field(None, description="New yearly period in days", ge=1)
    is_active: Optional[bool] = Field(None, description="New active status")
    is_free: Optional[bool] = Field(None, description="New free tier flag")
    features: Optional[Dict[str, Any]] = Field(None, description="New features document (replaces existing)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Name must not be blank")
        return v.strip() if v else v


class PlanResponse(BaseModel):
    """Plan response."""
    id: str
    name: str
    description: Optional[str]
    price_monthly_cents: Optional[int]
    price_yearly_cents: Optional[int]
    monthly_duration_days: Optional[int]
    yearly_duration_days: Optional[int]
    is_active: bool
    is_free: bool
    features: Dict[str, Any]
    created_at: Optional[str]
    updated_at: Optional[str]


class PlansListResponse(BaseModel):
    """Paginated list of plans."""
    plans: List[PlanResponse]
    total: int
    limit: int
    offset: int


def _to_response(plan: PlanInfo) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        description=plan.description,
        price_monthly_cents=plan.price_monthly_cents,
        price_yearly_cents=plan.price_yearly_cents,
        monthly_duration_days=plan.monthly_duration_days,
        yearly_duration_days=plan.yearly_duration_days,
        is_active=plan.is_active,
        is_free=plan.is_free,
        features=plan.features,
        created_at=plan.created_at.isoformat() if plan.created_at else None,
        updated_at=plan.updated_at.isoformat() if plan.updated_at else None
    )


def _validation_error(e: PlanValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": str(e), "errors": e.errors}
    )


def get_plan_service(db_session: Session = Depends(get_db_session)) -> PlanService:
    """Get plan service instance."""
    return PlanService(db_session)


# Routes

@router.get("", response_model=PlansListResponse)
def list_plans(
    include_inactive: bool = Query(False, description="Include inactive plans"),
    limit: int = Query(100, ge=1, le=500, description="Maximum plans to return"),
    offset: int = Query(0, ge=0, description="Number of plans to skip"),
    admin: SessionUser = Depends(verify_admin_role),
    plan_service: PlanService = Depends(get_plan_service)
):
    """
    List all plans with pagination.

    Requires admin role.
    """
    logger.info("Admin listing plans", extra={
        "user_id": admin.user_id,
        "include_inactive": include_inactive
    })

    plans, total = plan_service.list_plans(
        include_inactive=include_inactive,
        limit=limit,
        offset=offset
    )

    return PlansListResponse(
        plans=[_to_response(p) for p in plans],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/{plan_id}", response_model=PlanResponse)
def get_plan(
    plan_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    plan_service: PlanService = Depends(get_plan_service)
):
    """
    Get a specific plan by ID.

    Requires admin role.
    """
    try:
        return _to_response(plan_service.get_plan(plan_id))
    except PlanNotFoundServiceError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {plan_id}"
        )


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    plan_request: CreatePlanRequest,
    admin: SessionUser = Depends(verify_admin_role),
    plan_service: PlanService = Depends(get_plan_service)
):
    """
    Create a new plan.

    Requires admin role.
    """
    logger.info("Admin creating plan", extra={
        "user_id": admin.user_id,
        "plan_name": plan_request.name
    })

    try:
        plan = plan_service.create_plan(**plan_request.model_dump())
    except PlanValidationError as e:
        raise _validation_error(e)
    except PlanServiceError as e:
        logger.error("Failed to create plan", extra={
            "user_id": admin.user_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create plan"
        )

    logger.info("Plan created by admin", extra={
        "user_id": admin.user_id,
        "plan_id": plan.id
    })
    return _to_response(plan)


@router.put("/{plan_id}", response_model=PlanResponse)
def update_plan(
    plan_id: str,
    plan_request: UpdatePlanRequest,
    admin: SessionUser = Depends(verify_admin_role),
    plan_service: PlanService = Depends(get_plan_service)
):
    """
    Update an existing plan.

    Requires admin role. Send {"is_active": false} to retire a plan that
    still has subscribers.
    """
    logger.info("Admin updating plan", extra={
        "user_id": admin.user_id,
        "plan_id": plan_id
    })

    try:
        plan = plan_service.update_plan(plan_id, plan_request.model_dump(exclude_unset=True))
    except PlanNotFoundServiceError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {plan_id}"
        )
    except PlanValidationError as e:
        raise _validation_error(e)
    except PlanServiceError as e:
        logger.error("Failed to update plan", extra={
            "user_id": admin.user_id,
            "plan_id": plan_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update plan"
        )

    return _to_response(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(
    plan_id: str,
    admin: SessionUser = Depends(verify_admin_role),
    plan_service: PlanService = Depends(get_plan_service)
):
    """
    Delete a plan.

    Requires admin role. Plans referenced by an active subscription are
    refused with 409; deactivate them instead.
    """
    logger.info("Admin deleting plan", extra={
        "user_id": admin.user_id,
        "plan_id": plan_id
    })

    try:
        plan_service.delete_plan(plan_id)
    except PlanNotFoundServiceError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {plan_id}"
        )
    except PlanInUseServiceError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    except PlanServiceError as e:
        logger.error("Failed to delete plan", extra={
            "user_id": admin.user_id,
            "plan_id": plan_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete plan"
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
