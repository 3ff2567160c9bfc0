"""
Plan Override Service for admin management of per-user overrides.

Handles:
- One override per user, layered on an existing base plan
- Validation of the features and limits documents before storage
- Activating / deactivating overrides without deleting them
- Invalidating the affected user's cached policy after every write

SECURITY: Admin operations require admin role verification.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from fieldops.entitlements.cache import EntitlementCache, get_entitlement_cache
from fieldops.entitlements.loader import (
    decode_document,
    validate_features_document,
    validate_limits_document,
)
from fieldops.models.plan_override import PlanOverride
from fieldops.repositories.plan_overrides_repo import (
    PlanOverridesRepository,
    PlanOverrideRepositoryError,
    PlanOverrideNotFoundError,
    PlanOverrideAlreadyExistsError,
)
from fieldops.repositories.plans_repo import PlansRepository

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("plan_id", "features", "limits", "is_active", "notes")


@dataclass
class PlanOverrideInfo:
    """Override information with decoded documents."""
    id: str
    user_id: str
    plan_id: str
    plan_name: Optional[str]
    is_active: bool
    features: Dict[str, Any] = field(default_factory=dict)
    limits: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, override: PlanOverride) -> "PlanOverrideInfo":
        return cls(
            id=override.id,
            user_id=override.user_id,
            plan_id=override.plan_id,
            plan_name=override.plan.name if override.plan is not None else None,
            is_active=bool(override.is_active),
            features=decode_document(override.features, source=f"plan_override:{override.id}"),
            limits=decode_document(override.limits, source=f"plan_override_limits:{override.id}"),
            notes=override.notes,
            created_at=override.created_at,
            updated_at=override.updated_at,
        )


class PlanOverrideServiceError(Exception):
    """Base exception for plan override service errors."""
    pass


class PlanOverrideNotFoundServiceError(PlanOverrideServiceError):
    """Override not found."""
    pass


class BasePlanNotFoundError(PlanOverrideServiceError):
    """The base plan referenced by an override does not exist."""
    pass


class PlanOverrideConflictError(PlanOverrideServiceError):
    """The user already has an override."""
    pass


class PlanOverrideValidationError(PlanOverrideServiceError):
    """Features or limits document failed validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


def _serialize(document: Optional[Dict[str, Any]], validator, label: str) -> Optional[str]:
    if document is None:
        return None
    result = validator(document)
    if not result.valid:
        raise PlanOverrideValidationError(f"Invalid override {label}", errors=result.errors)
    return json.dumps(document)


class PlanOverrideService:
    """
    Service for admin plan override operations.

    All methods require admin authorization (verified at route level).
    """

    def __init__(self, db_session: Session, cache: Optional[EntitlementCache] = None):
        self.db = db_session
        self.repo = PlansRepository(db_session)
        self.overrides = PlanOverridesRepository(db_session)
        self._cache = cache or get_entitlement_cache()

    def _require_plan(self, plan_id: str) -> None:
        if not self.repo.get_by_id(plan_id):
            raise BasePlanNotFoundError(f"Plan not found: {plan_id}")

    def _invalidate_user(self, user_id: str, reason: str) -> None:
        self._cache.invalidate(user_id, reason=reason)

    def list_overrides(
        self,
        plan_id: Optional[str] = None,
        include_inactive: bool = True,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[PlanOverrideInfo], int]:
        """
        List overrides with pagination.

        Returns:
            Tuple of (overrides, total count)
        """
        rows = self.overrides.get_all(
            plan_id=plan_id,
            include_inactive=include_inactive,
            limit=limit,
            offset=offset,
        )
        return [PlanOverrideInfo.from_model(r) for r in rows], self.overrides.count(
            plan_id=plan_id, include_inactive=include_inactive
        )

    def get_override(self, override_id: str) -> PlanOverrideInfo:
        override = self.overrides.get_by_id(override_id)
        if not override:
            raise PlanOverrideNotFoundServiceError(f"Plan override not found: {override_id}")
        return PlanOverrideInfo.from_model(override)

    def get_override_for_user(self, user_id: str) -> PlanOverrideInfo:
        """Get a user's override, active or not."""
        override = self.overrides.get_for_user(user_id)
        if not override:
            raise PlanOverrideNotFoundServiceError(f"No plan override for user: {user_id}")
        return PlanOverrideInfo.from_model(override)

    def create_override(
        self,
        user_id: str,
        plan_id: str,
        features: Optional[Dict[str, Any]] = None,
        limits: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        notes: Optional[str] = None
    ) -> PlanOverrideInfo:
        """
        Create a user's override.

        Raises:
            BasePlanNotFoundError: If the base plan doesn't exist
            PlanOverrideConflictError: If the user already has an override
            PlanOverrideValidationError: If a document is invalid
        """
        features_json = _serialize(features, validate_features_document, "features")
        limits_json = _serialize(limits, validate_limits_document, "limits")
        self._require_plan(plan_id)

        try:
            override = self.overrides.create(
                user_id=user_id,
                plan_id=plan_id,
                features=features_json,
                limits=limits_json,
                is_active=is_active,
                notes=notes,
            )
            self.db.commit()
        except PlanOverrideAlreadyExistsError as e:
            self.db.rollback()
            raise PlanOverrideConflictError(str(e))
        except PlanOverrideRepositoryError as e:
            self.db.rollback()
            logger.error("Failed to create plan override", extra={
                "user_id": user_id,
                "error": str(e)
            })
            raise PlanOverrideServiceError(f"Failed to create plan override: {e}")

        self._invalidate_user(user_id, f"override_created:{override.id}")
        return PlanOverrideInfo.from_model(override)

    def update_override(self, override_id: str, changes: Dict[str, Any]) -> PlanOverrideInfo:
        """
        Update an override.

        Args:
            override_id: Override identifier
            changes: Fields to change; absent keys are left untouched

        Raises:
            PlanOverrideNotFoundServiceError: If the override doesn't exist
            BasePlanNotFoundError: If a new base plan doesn't exist
            PlanOverrideValidationError: If a document is invalid
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise PlanOverrideValidationError(f"Unknown override fields: {sorted(unknown)}")

        updates = dict(changes)
        if "features" in updates:
            updates["features"] = _serialize(updates["features"], validate_features_document, "features")
        if "limits" in updates:
            updates["limits"] = _serialize(updates["limits"], validate_limits_document, "limits")
        if updates.get("plan_id"):
            self._require_plan(updates["plan_id"])

        try:
            override = self.overrides.update(override_id, **updates)
            self.db.commit()
        except PlanOverrideNotFoundError:
            self.db.rollback()
            raise PlanOverrideNotFoundServiceError(f"Plan override not found: {override_id}")
        except PlanOverrideRepositoryError as e:
            self.db.rollback()
            logger.error("Failed to update plan override", extra={
                "override_id": override_id,
                "error": str(e)
            })
            raise PlanOverrideServiceError(f"Failed to update plan override: {e}")

        self._invalidate_user(override.user_id, f"override_updated:{override_id}")
        return PlanOverrideInfo.from_model(override)

    def toggle_override(self, override_id: str) -> PlanOverrideInfo:
        """Flip an override between active and inactive."""
        override = self.overrides.get_by_id(override_id)
        if not override:
            raise PlanOverrideNotFoundServiceError(f"Plan override not found: {override_id}")
        return self.update_override(override_id, {"is_active": not override.is_active})

    def delete_override(self, override_id: str) -> None:
        """
        Delete an override.

        Raises:
            PlanOverrideNotFoundServiceError: If the override doesn't exist
        """
        override = self.overrides.delete(override_id)
        if override is None:
            raise PlanOverrideNotFoundServiceError(f"Plan override not found: {override_id}")
        user_id = override.user_id
        self.db.commit()

        self._invalidate_user(user_id, f"override_deleted:{override_id}")
