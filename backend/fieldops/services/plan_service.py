"""
Plan Service for admin plan management.

Handles:
- Creating, updating and listing plans
- Validating plan features documents before storage
- Refusing to delete plans that active subscriptions still reference
- Invalidating every cached policy after any plan write

SECURITY: Admin operations require admin role verification.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from fieldops.entitlements.cache import EntitlementCache, get_entitlement_cache
from fieldops.entitlements.loader import decode_document, validate_features_document
from fieldops.models.plan import Plan
from fieldops.repositories.plans_repo import (
    PlansRepository,
    PlanRepositoryError,
    PlanNotFoundError,
    PlanAlreadyExistsError,
    PlanInUseError,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "price_monthly_cents",
    "price_yearly_cents",
    "monthly_duration_days",
    "yearly_duration_days",
    "is_active",
    "is_free",
    "features",
)


@dataclass
class PlanInfo:
    """Plan information with its decoded features document."""
    id: str
    name: str
    description: Optional[str]
    price_monthly_cents: Optional[int]
    price_yearly_cents: Optional[int]
    monthly_duration_days: Optional[int]
    yearly_duration_days: Optional[int]
    is_active: bool
    is_free: bool
    features: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, plan: Plan) -> "PlanInfo":
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price_monthly_cents=plan.price_monthly_cents,
            price_yearly_cents=plan.price_yearly_cents,
            monthly_duration_days=plan.monthly_duration_days,
            yearly_duration_days=plan.yearly_duration_days,
            is_active=bool(plan.is_active),
            is_free=bool(plan.is_free),
            features=decode_document(plan.features, source=f"plan:{plan.id}"),
            created_at=plan.created_at,
            updated_at=plan.updated_at,
        )


class PlanServiceError(Exception):
    """Base exception for plan service errors."""
    pass


class PlanNotFoundServiceError(PlanServiceError):
    """Plan not found."""
    pass


class PlanValidationError(PlanServiceError):
    """Plan validation failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class PlanInUseServiceError(PlanServiceError):
    """Plan cannot be deleted while active subscriptions reference it."""
    pass


def _serialize_features(features: Optional[Dict[str, Any]]) -> Optional[str]:
    if features is None:
        return None
    result = validate_features_document(features)
    if not result.valid:
        raise PlanValidationError("Invalid plan features", errors=result.errors)
    return json.dumps(features)


class PlanService:
    """
    Service for admin plan management operations.

    All methods require admin authorization (verified at route level).
    Plans are global entities - not user-scoped.
    """

    def __init__(self, db_session: Session, cache: Optional[EntitlementCache] = None):
        """
        Initialize plan service.

        Args:
            db_session: Database session
            cache: Entitlement cache to invalidate on writes
        """
        self.db = db_session
        self.repo = PlansRepository(db_session)
        self._cache = cache or get_entitlement_cache()

    def _invalidate_policies(self, reason: str) -> None:
        self._cache.invalidate_all(reason=reason)

    def list_plans(
        self,
        include_inactive: bool = False,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[PlanInfo], int]:
        """
        List plans with pagination.

        Returns:
            Tuple of (plans, total count)
        """
        plans = self.repo.get_all(include_inactive=include_inactive, limit=limit, offset=offset)
        total = self.repo.count(include_inactive=include_inactive)
        return [PlanInfo.from_model(p) for p in plans], total

    def get_plan(self, plan_id: str) -> PlanInfo:
        """
        Get a plan.

        Raises:
            PlanNotFoundServiceError: If plan doesn't exist
        """
        plan = self.repo.get_by_id(plan_id)
        if not plan:
            raise PlanNotFoundServiceError(f"Plan not found: {plan_id}")
        return PlanInfo.from_model(plan)

    def create_plan(
        self,
        name: str,
        description: Optional[str] = None,
        price_monthly_cents: Optional[int] = None,
        price_yearly_cents: Optional[int] = None,
        monthly_duration_days: Optional[int] = 30,
        yearly_duration_days: Optional[int] = 365,
        is_active: bool = True,
        is_free: bool = False,
        features: Optional[Dict[str, Any]] = None
    ) -> PlanInfo:
        """
        Create a new plan.

        Args:
            name: Unique plan name
            description: Plan description
            price_monthly_cents: Monthly price in cents
            price_yearly_cents: Yearly price in cents
            monthly_duration_days: Monthly period length (None = unlimited)
            yearly_duration_days: Yearly period length (None = unlimited)
            is_active: Whether plan is available for subscriptions
            is_free: Free tier flag
            features: Features document

        Returns:
            Created PlanInfo

        Raises:
            PlanValidationError: If the features document is invalid or the
                name is taken
            PlanServiceError: If creation fails
        """
        features_json = _serialize_features(features)

        try:
            plan = self.repo.create(
                name=name,
                description=description,
                price_monthly_cents=price_monthly_cents,
                price_yearly_cents=price_yearly_cents,
                monthly_duration_days=monthly_duration_days,
                yearly_duration_days=yearly_duration_days,
                is_active=is_active,
                is_free=is_free,
                features=features_json,
            )
            self.db.commit()
        except PlanAlreadyExistsError as e:
            self.db.rollback()
            raise PlanValidationError(str(e))
        except PlanRepositoryError as e:
            self.db.rollback()
            logger.error("Failed to create plan", extra={"error": str(e)})
            raise PlanServiceError(f"Failed to create plan: {e}")

        self._invalidate_policies(f"plan_created:{plan.id}")

        logger.info("Plan created via service", extra={
            "plan_id": plan.id,
            "name": name
        })
        return PlanInfo.from_model(plan)

    def update_plan(self, plan_id: str, changes: Dict[str, Any]) -> PlanInfo:
        """
        Update an existing plan.

        Args:
            plan_id: Plan identifier
            changes: Fields to change; keys absent from the dict are left
                untouched, explicit None clears nullable columns

        Returns:
            Updated PlanInfo

        Raises:
            PlanNotFoundServiceError: If plan doesn't exist
            PlanValidationError: If validation fails
            PlanServiceError: If update fails
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise PlanValidationError(f"Unknown plan fields: {sorted(unknown)}")

        updates = dict(changes)
        if "features" in updates:
            updates["features"] = _serialize_features(updates["features"])

        try:
            plan = self.repo.update(plan_id=plan_id, **updates)
            self.db.commit()
        except PlanNotFoundError:
            self.db.rollback()
            raise PlanNotFoundServiceError(f"Plan not found: {plan_id}")
        except PlanAlreadyExistsError as e:
            self.db.rollback()
            raise PlanValidationError(str(e))
        except PlanRepositoryError as e:
            self.db.rollback()
            logger.error("Failed to update plan", extra={
                "plan_id": plan_id,
                "error": str(e)
            })
            raise PlanServiceError(f"Failed to update plan: {e}")

        self._invalidate_policies(f"plan_updated:{plan_id}")

        logger.info("Plan updated via service", extra={
            "plan_id": plan_id,
            "updated_fields": sorted(changes.keys())
        })
        return PlanInfo.from_model(plan)

    def delete_plan(self, plan_id: str) -> None:
        """
        Delete a plan that no active subscription references.

        Raises:
            PlanNotFoundServiceError: If plan doesn't exist
            PlanInUseServiceError: If active subscriptions reference it
            PlanServiceError: If deletion fails
        """
        try:
            deleted = self.repo.delete(plan_id)
            if not deleted:
                raise PlanNotFoundServiceError(f"Plan not found: {plan_id}")
            self.db.commit()
        except PlanInUseError as e:
            self.db.rollback()
            raise PlanInUseServiceError(str(e))
        except PlanRepositoryError as e:
            self.db.rollback()
            logger.error("Failed to delete plan", extra={
                "plan_id": plan_id,
                "error": str(e)
            })
            raise PlanServiceError(f"Failed to delete plan: {e}")

        self._invalidate_policies(f"plan_deleted:{plan_id}")
        logger.info("Plan deleted via service", extra={"plan_id": plan_id})
