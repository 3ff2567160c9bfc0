"""
Plan Overrides Repository.

One override per user. Overrides customise a single client's features
document on top of the base plan they reference.
"""

import logging
from typing import Optional, List

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from fieldops.models.plan_override import PlanOverride

logger = logging.getLogger(__name__)


class PlanOverrideRepositoryError(Exception):
    """Base exception for plan override repository errors."""
    pass


class PlanOverrideNotFoundError(PlanOverrideRepositoryError):
    """Override not found."""
    pass


class PlanOverrideAlreadyExistsError(PlanOverrideRepositoryError):
    """User already has an override."""
    pass


_UNSET = object()


class PlanOverridesRepository:
    """Repository for PlanOverride rows."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_id(self, override_id: str) -> Optional[PlanOverride]:
        return self.db.query(PlanOverride).filter(PlanOverride.id == override_id).first()

    def get_for_user(self, user_id: str) -> Optional[PlanOverride]:
        """Get a user's override regardless of its active flag."""
        return self.db.query(PlanOverride).filter(PlanOverride.user_id == user_id).first()

    def get_active_for_user(self, user_id: str) -> Optional[PlanOverride]:
        """
        Get a user's override if it is active.

        Args:
            user_id: User ID

        Returns:
            Active override, or None when absent or deactivated
        """
        return self.db.query(PlanOverride).filter(
            PlanOverride.user_id == user_id,
            PlanOverride.is_active == True  # noqa: E712
        ).first()

    def get_all(
        self,
        plan_id: Optional[str] = None,
        include_inactive: bool = True,
        limit: int = 100,
        offset: int = 0
    ) -> List[PlanOverride]:
        """
        List overrides, newest first.

        Args:
            plan_id: Only overrides layered on this plan
            include_inactive: Whether to include deactivated overrides
            limit: Maximum number of rows
            offset: Number of rows to skip
        """
        query = self.db.query(PlanOverride)
        if plan_id:
            query = query.filter(PlanOverride.plan_id == plan_id)
        if not include_inactive:
            query = query.filter(PlanOverride.is_active == True)  # noqa: E712
        return (
            query.order_by(PlanOverride.created_at.desc(), PlanOverride.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count(self, plan_id: Optional[str] = None, include_inactive: bool = True) -> int:
        query = self.db.query(PlanOverride)
        if plan_id:
            query = query.filter(PlanOverride.plan_id == plan_id)
        if not include_inactive:
            query = query.filter(PlanOverride.is_active == True)  # noqa: E712
        return query.count()

    def create(
        self,
        user_id: str,
        plan_id: str,
        features: Optional[str] = None,
        limits: Optional[str] = None,
        is_active: bool = True,
        notes: Optional[str] = None
    ) -> PlanOverride:
        """
        Create an override for a user.

        Raises:
            PlanOverrideAlreadyExistsError: If the user already has one
        """
        if self.get_for_user(user_id):
            raise PlanOverrideAlreadyExistsError(
                f"User '{user_id}' already has a plan override"
            )

        override = PlanOverride(
            user_id=user_id,
            plan_id=plan_id,
            features=features,
            limits=limits,
            is_active=is_active,
            notes=notes,
        )

        try:
            self.db.add(override)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.error("Failed to create plan override - integrity error", extra={
                "user_id": user_id,
                "plan_id": plan_id,
                "error": str(e)
            })
            raise PlanOverrideAlreadyExistsError(f"Plan override creation failed: {e}")

        logger.info("Plan override created", extra={
            "override_id": override.id,
            "user_id": user_id,
            "plan_id": plan_id
        })
        return override

    def update(
        self,
        override_id: str,
        plan_id: Optional[str] = None,
        features=_UNSET,
        limits=_UNSET,
        is_active: Optional[bool] = None,
        notes=_UNSET
    ) -> PlanOverride:
        """
        Update an override. Omitted arguments leave columns untouched.

        Raises:
            PlanOverrideNotFoundError: If the override doesn't exist
        """
        override = self.get_by_id(override_id)
        if not override:
            raise PlanOverrideNotFoundError(f"Plan override not found: {override_id}")

        updated = []
        if plan_id is not None:
            override.plan_id = plan_id
            updated.append("plan_id")
        if features is not _UNSET:
            override.features = features
            updated.append("features")
        if limits is not _UNSET:
            override.limits = limits
            updated.append("limits")
        if is_active is not None:
            override.is_active = is_active
            updated.append("is_active")
        if notes is not _UNSET:
            override.notes = notes
            updated.append("notes")

        self.db.flush()

        logger.info("Plan override updated", extra={
            "override_id": override_id,
            "user_id": override.user_id,
            "updated_fields": updated
        })
        return override

    def delete(self, override_id: str) -> Optional[PlanOverride]:
        """
        Delete an override.

        Returns:
            The deleted override (detached), or None if not found
        """
        override = self.get_by_id(override_id)
        if not override:
            return None

        self.db.delete(override)
        self.db.flush()

        logger.info("Plan override deleted", extra={
            "override_id": override_id,
            "user_id": override.user_id
        })
        return override
