"""
Plans Repository for admin plan management.

Plans are global (not user-scoped) - they define available subscription tiers.
Admin operations do not require a user context.
"""

import logging
from typing import Optional, List

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from fieldops.models.plan import Plan
from fieldops.models.plan_override import PlanOverride
from fieldops.models.subscription import UserSubscription

logger = logging.getLogger(__name__)


class PlanRepositoryError(Exception):
    """Base exception for plan repository errors."""
    pass


class PlanNotFoundError(PlanRepositoryError):
    """Plan not found."""
    pass


class PlanAlreadyExistsError(PlanRepositoryError):
    """Plan with same name/id already exists."""
    pass


class PlanInUseError(PlanRepositoryError):
    """Plan is still referenced by subscriptions or overrides."""
    pass


# Sentinel distinguishing "not provided" from an explicit None
_UNSET = object()


class PlansRepository:
    """
    Repository for Plan operations.

    Plans are global entities - not user-scoped.
    Used by the plan service and the configuration store.
    """

    def __init__(self, db_session: Session):
        """
        Initialize plans repository.

        Args:
            db_session: Database session
        """
        self.db = db_session

    def get_by_id(self, plan_id: str) -> Optional[Plan]:
        """
        Get a plan by ID.

        Args:
            plan_id: Plan identifier

        Returns:
            Plan if found, None otherwise
        """
        return self.db.query(Plan).filter(Plan.id == plan_id).first()

    def get_by_name(self, name: str) -> Optional[Plan]:
        """
        Get a plan by name.

        Args:
            name: Plan name (unique)

        Returns:
            Plan if found, None otherwise
        """
        return self.db.query(Plan).filter(Plan.name == name).first()

    def get_all(
        self,
        include_inactive: bool = False,
        limit: int = 100,
        offset: int = 0
    ) -> List[Plan]:
        """
        Get all plans with pagination, cheapest first.

        Args:
            include_inactive: Whether to include inactive plans
            limit: Maximum number of plans to return
            offset: Number of plans to skip

        Returns:
            List of Plan objects
        """
        query = self.db.query(Plan)

        if not include_inactive:
            query = query.filter(Plan.is_active == True)  # noqa: E712

        return (
            query.order_by(Plan.price_monthly_cents.asc().nullsfirst(), Plan.name.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count(self, include_inactive: bool = False) -> int:
        """Count plans, optionally including inactive ones."""
        query = self.db.query(Plan)

        if not include_inactive:
            query = query.filter(Plan.is_active == True)  # noqa: E712

        return query.count()

    def count_subscriptions(self, plan_id: str) -> int:
        """Count subscriptions of any status referencing a plan."""
        return self.db.query(UserSubscription).filter(
            UserSubscription.plan_id == plan_id
        ).count()

    def count_overrides(self, plan_id: str) -> int:
        """Count user overrides layered on a plan."""
        return self.db.query(PlanOverride).filter(
            PlanOverride.plan_id == plan_id
        ).count()

    def create(
        self,
        name: str,
        description: Optional[str] = None,
        price_monthly_cents: Optional[int] = None,
        price_yearly_cents: Optional[int] = None,
        monthly_duration_days: Optional[int] = 30,
        yearly_duration_days: Optional[int] = 365,
        is_active: bool = True,
        is_free: bool = False,
        features: Optional[str] = None,
        plan_id: Optional[str] = None
    ) -> Plan:
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
            features: Serialized features document (JSON text)
            plan_id: Optional custom plan ID (auto-generated if not provided)

        Returns:
            Created Plan object

        Raises:
            PlanAlreadyExistsError: If plan with same name or ID exists
        """
        if self.get_by_name(name):
            raise PlanAlreadyExistsError(f"Plan with name '{name}' already exists")

        if plan_id and self.get_by_id(plan_id):
            raise PlanAlreadyExistsError(f"Plan with ID '{plan_id}' already exists")

        plan = Plan(
            name=name,
            description=description,
            price_monthly_cents=price_monthly_cents,
            price_yearly_cents=price_yearly_cents,
            monthly_duration_days=monthly_duration_days,
            yearly_duration_days=yearly_duration_days,
            is_active=is_active,
            is_free=is_free,
            features=features,
        )
        if plan_id:
            plan.id = plan_id

        try:
            self.db.add(plan)
            self.db.flush()

            logger.info("Plan created", extra={
                "plan_id": plan.id,
                "name": name,
                "price_monthly_cents": price_monthly_cents
            })

            return plan
        except IntegrityError as e:
            self.db.rollback()
            logger.error("Failed to create plan - integrity error", extra={
                "plan_id": plan_id,
                "name": name,
                "error": str(e)
            })
            raise PlanAlreadyExistsError(f"Plan creation failed: {e}")

    def update(
        self,
        plan_id: str,
        name: Optional[str] = None,
        description=_UNSET,
        price_monthly_cents=_UNSET,
        price_yearly_cents=_UNSET,
        monthly_duration_days=_UNSET,
        yearly_duration_days=_UNSET,
        is_active: Optional[bool] = None,
        is_free: Optional[bool] = None,
        features=_UNSET
    ) -> Plan:
        """
        Update an existing plan.

        Nullable columns accept an explicit None to clear them; omitted
        arguments leave the column untouched.

        Returns:
            Updated Plan object

        Raises:
            PlanNotFoundError: If plan doesn't exist
            PlanAlreadyExistsError: If new name conflicts with existing plan
        """
        plan = self.get_by_id(plan_id)
        if not plan:
            raise PlanNotFoundError(f"Plan not found: {plan_id}")

        updated = {}

        if name and name != plan.name:
            if self.get_by_name(name):
                raise PlanAlreadyExistsError(f"Plan with name '{name}' already exists")
            plan.name = name
            updated["name"] = name

        nullable = {
            "description": description,
            "price_monthly_cents": price_monthly_cents,
            "price_yearly_cents": price_yearly_cents,
            "monthly_duration_days": monthly_duration_days,
            "yearly_duration_days": yearly_duration_days,
            "features": features,
        }
        for column, value in nullable.items():
            if value is not _UNSET:
                setattr(plan, column, value)
                updated[column] = value

        if is_active is not None:
            plan.is_active = is_active
            updated["is_active"] = is_active
        if is_free is not None:
            plan.is_free = is_free
            updated["is_free"] = is_free

        self.db.flush()

        logger.info("Plan updated", extra={
            "plan_id": plan_id,
            "updated_fields": sorted(updated.keys())
        })

        return plan

    def delete(self, plan_id: str) -> bool:
        """
        Delete a plan.

        Plans referenced by any subscription (including cancelled or
        expired ones) or by a user override cannot be deleted;
        soft-deactivate them with is_active=False instead.

        Args:
            plan_id: Plan identifier

        Returns:
            True if deleted, False if not found

        Raises:
            PlanInUseError: If subscriptions or overrides reference the plan
        """
        plan = self.get_by_id(plan_id)
        if not plan:
            return False

        subscriptions = self.count_subscriptions(plan_id)
        overrides = self.count_overrides(plan_id)
        if subscriptions or overrides:
            raise PlanInUseError(
                f"Plan {plan_id} is referenced by {subscriptions} subscription(s) "
                f"and {overrides} override(s); deactivate it instead"
            )

        try:
            self.db.delete(plan)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Plan delete rejected by foreign key", extra={
                "plan_id": plan_id,
                "error": str(e)
            })
            raise PlanInUseError(f"Plan {plan_id} is still referenced; deactivate it instead")

        logger.info("Plan deleted", extra={"plan_id": plan_id})

        return True
