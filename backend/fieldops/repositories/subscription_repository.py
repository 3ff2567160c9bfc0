"""
Subscription repository for data access operations.

Read-side queries used by the entitlement engine to find a user's
authoritative subscription.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from fieldops.models.subscription import UserSubscription, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    All lookups are keyed by the user ID supplied by the session layer.
    """

    def __init__(self, db_session: Session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session

    def get_active_for_user(self, user_id: str) -> Optional[UserSubscription]:
        """
        Get the authoritative active subscription for a user.

        When several active subscriptions exist, the most recently created
        one wins.

        Args:
            user_id: User ID

        Returns:
            Active subscription if found, None otherwise
        """
        return self.db.query(UserSubscription).filter(
            UserSubscription.user_id == user_id,
            UserSubscription.status == SubscriptionStatus.ACTIVE.value
        ).order_by(
            UserSubscription.created_at.desc(),
            UserSubscription.id.desc()
        ).first()
