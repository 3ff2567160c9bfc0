"""
Configuration store - read access to plans, subscriptions and overrides.

The store is the storage boundary of the entitlement engine: rows are
turned into immutable records with their JSON documents parsed, so no
SQLAlchemy object or raw JSON escapes into the resolver. Database failures
surface as StoreUnavailableError.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldops.entitlements.errors import StoreUnavailableError
from fieldops.entitlements.loader import parse_features_document, parse_limits_document
from fieldops.entitlements.models import OverrideRecord, PlanRecord
from fieldops.repositories.plan_overrides_repo import PlanOverridesRepository
from fieldops.repositories.plans_repo import PlansRepository
from fieldops.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)


class ConfigurationStore:
    """
    Read-only facade over the plan, subscription and override repositories.

    Args:
        db_session: Database session
    """

    def __init__(self, db_session: Session):
        self.plans = PlansRepository(db_session)
        self.subscriptions = SubscriptionRepository(db_session)
        self.overrides = PlanOverridesRepository(db_session)

    def _unavailable(self, operation: str, user_id: Optional[str], error: SQLAlchemyError) -> StoreUnavailableError:
        logger.error(
            "Configuration store lookup failed",
            extra={
                "operation": operation,
                "user_id": user_id,
                "error": str(error),
                "error_type": type(error).__name__,
            }
        )
        return StoreUnavailableError(operation, user_id=user_id, cause=error)

    def get_active_plan_for_user(self, user_id: str) -> Optional[str]:
        """
        Get the plan ID of the user's authoritative active subscription.

        Returns:
            Plan ID, or None when the user has no active subscription

        Raises:
            StoreUnavailableError: On database failure
        """
        try:
            subscription = self.subscriptions.get_active_for_user(user_id)
        except SQLAlchemyError as e:
            raise self._unavailable("get_active_plan_for_user", user_id, e)
        return subscription.plan_id if subscription else None

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        """
        Get a plan with its features document parsed.

        Raises:
            StoreUnavailableError: On database failure
        """
        try:
            plan = self.plans.get_by_id(plan_id)
        except SQLAlchemyError as e:
            raise self._unavailable("get_plan", None, e)
        if plan is None:
            return None
        return PlanRecord(
            id=plan.id,
            name=plan.name,
            features=parse_features_document(plan.features, source=f"plan:{plan.id}"),
            is_active=bool(plan.is_active),
        )

    def get_active_override(self, user_id: str) -> Optional[OverrideRecord]:
        """
        Get the user's override if it exists and is active.

        Raises:
            StoreUnavailableError: On database failure
        """
        try:
            override = self.overrides.get_active_for_user(user_id)
        except SQLAlchemyError as e:
            raise self._unavailable("get_active_override", user_id, e)
        if override is None:
            return None
        return OverrideRecord(
            id=override.id,
            user_id=override.user_id,
            plan_id=override.plan_id,
            features=parse_features_document(
                override.features, source=f"plan_override:{override.id}"
            ),
            limits=parse_limits_document(
                override.limits, source=f"plan_override_limits:{override.id}"
            ),
            is_active=True,
        )
