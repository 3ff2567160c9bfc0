"""
Per-user plan override model.

An override customises a single client's entitlements on top of their base
plan. At most one override exists per user; an inactive override is treated
as absent by the resolver.
"""

from sqlalchemy import Column, String, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from fieldops.models.base import Base, TimestampMixin, generate_uuid


class PlanOverride(Base, TimestampMixin):
    """
    Client-specific features document layered over a base plan.

    The features column uses the same schema as Plan.features. The optional
    limits column holds a dedicated limits document applied last.
    """

    __tablename__ = "plan_overrides"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    user_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User the override applies to (one override per user)"
    )

    plan_id = Column(
        String(36),
        ForeignKey("subscription_plans.id"),
        nullable=False,
        index=True,
        comment="Base plan this override customises"
    )

    features = Column(
        Text,
        nullable=True,
        comment="JSON features document, same schema as subscription_plans.features"
    )
    limits = Column(
        Text,
        nullable=True,
        comment="JSON limits document merged after features.limits"
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Inactive overrides are ignored by the resolver"
    )

    notes = Column(
        Text,
        nullable=True,
        comment="Admin notes explaining why the override exists"
    )

    plan = relationship("Plan", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<PlanOverride(user_id={self.user_id}, plan_id={self.plan_id}, "
            f"is_active={self.is_active})>"
        )
