"""
Subscription plan model.

Plans are GLOBAL (not user-scoped) - they define the product offerings.
Each plan carries a free-form features document (JSON text) describing
feature flags, page access, visible fields, permissions and usage limits.
"""

from sqlalchemy import Column, String, Text, Integer, Boolean
from sqlalchemy.orm import relationship

from fieldops.models.base import Base, TimestampMixin, generate_uuid


class Plan(Base, TimestampMixin):
    """
    Defines a subscription tier and its entitlement document.

    Plans are never deleted while an active subscription references them;
    administrators soft-deactivate them instead.
    """

    __tablename__ = "subscription_plans"

    # Primary key
    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    # Plan identification
    name = Column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
        comment="Unique plan name (Free, Pro, Business)"
    )
    description = Column(
        Text,
        nullable=True,
        comment="Plan description for pricing page"
    )

    # Pricing (in cents to avoid floating point issues)
    price_monthly_cents = Column(
        Integer,
        nullable=True,
        comment="Monthly price in cents (NULL = not sold monthly)"
    )
    price_yearly_cents = Column(
        Integer,
        nullable=True,
        comment="Yearly price in cents (NULL = not sold yearly)"
    )
    monthly_duration_days = Column(
        Integer,
        nullable=True,
        default=30,
        comment="Length of a monthly billing period in days (NULL = unlimited)"
    )
    yearly_duration_days = Column(
        Integer,
        nullable=True,
        default=365,
        comment="Length of a yearly billing period in days (NULL = unlimited)"
    )

    # Plan status
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Whether plan is available for new subscriptions"
    )
    is_free = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Free tier flag"
    )

    # Entitlements
    features = Column(
        Text,
        nullable=True,
        comment="JSON features document: flags, page_access, visible_fields, permissions, limits"
    )

    # Relationships
    subscriptions = relationship(
        "UserSubscription",
        back_populates="plan",
        lazy="dynamic"
    )

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name={self.name})>"
