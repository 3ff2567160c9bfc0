"""
Database models for plans, subscriptions and per-user plan overrides.

Importing this package registers every model on the shared metadata.
"""

from fieldops.models.base import TimestampMixin, generate_uuid
from fieldops.models.plan import Plan
from fieldops.models.subscription import (
    UserSubscription,
    SubscriptionStatus,
    BillingFrequency,
)
from fieldops.models.plan_override import PlanOverride

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "Plan",
    "UserSubscription",
    "SubscriptionStatus",
    "BillingFrequency",
    "PlanOverride",
]
