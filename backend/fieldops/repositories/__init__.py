"""Repository layer for plans, subscriptions and plan overrides."""

from fieldops.repositories.plans_repo import (
    PlansRepository,
    PlanRepositoryError,
    PlanNotFoundError,
    PlanAlreadyExistsError,
    PlanInUseError,
)
from fieldops.repositories.plan_overrides_repo import (
    PlanOverridesRepository,
    PlanOverrideRepositoryError,
    PlanOverrideNotFoundError,
    PlanOverrideAlreadyExistsError,
)
from fieldops.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "PlansRepository",
    "PlanRepositoryError",
    "PlanNotFoundError",
    "PlanAlreadyExistsError",
    "PlanInUseError",
    "PlanOverridesRepository",
    "PlanOverrideRepositoryError",
    "PlanOverrideNotFoundError",
    "PlanOverrideAlreadyExistsError",
    "SubscriptionRepository",
]
