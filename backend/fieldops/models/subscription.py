"""
User subscription model.

A subscription binds a user to a Plan. The entitlement engine only reads
subscriptions; billing flows own their lifecycle.
"""

import enum

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from fieldops.models.base import Base, TimestampMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    TRIAL = "trial"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BillingFrequency(str, enum.Enum):
    """How often the subscription is billed."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UserSubscription(Base, TimestampMixin):
    """
    A user's subscription to a plan.

    When a user holds several active subscriptions, the most recently
    created one is authoritative.
    """

    __tablename__ = "user_subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    user_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning user ID from the session layer"
    )

    plan_id = Column(
        String(36),
        ForeignKey("subscription_plans.id"),
        nullable=False,
        index=True
    )

    status = Column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        comment="active, trial, cancelled, expired"
    )
    billing_frequency = Column(
        String(20),
        nullable=False,
        default=BillingFrequency.MONTHLY.value,
        comment="monthly or yearly"
    )

    start_date = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Start of the current subscription period"
    )
    end_date = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the current subscription period (NULL = open-ended)"
    )
    renewal_count = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of completed renewals"
    )

    plan = relationship("Plan", back_populates="subscriptions")

    __table_args__ = (
        Index("ix_user_subscriptions_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserSubscription(user_id={self.user_id}, plan_id={self.plan_id}, "
            f"status={self.status})>"
        )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value
