"""
Entitlement Service - single entry point for policy resolution.

Provides:
- resolve_effective_policy(user_id) -> EffectivePolicy | NOT_SUBSCRIBED
- get_user_plan_config(user_id)     -> EffectivePolicy | None
- is_field_visible(user_id, entity, field_id)
- invalidate_user(user_id) / invalidate_all()

Resolution:
    1. Cache hit -> return (tagged source="cache")
    2. Active subscription -> base plan ID; none -> NOT_SUBSCRIBED
    3. Base plan features (malformed JSON -> empty document, logged)
    4. Active override for the user (inactive overrides are ignored)
    5. merge_features(base, override.features, override.limits)
    6. Cache and return

Store failures propagate as StoreUnavailableError; any other failure is
reported as EntitlementEvaluationError. Neither is ever turned into an
allow.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from fieldops.entitlements.cache import EntitlementCache, get_entitlement_cache
from fieldops.entitlements.errors import EntitlementError, StoreUnavailableError
from fieldops.entitlements.models import (
    NOT_SUBSCRIBED,
    EffectivePolicy,
    PolicyResult,
    PolicySource,
)
from fieldops.entitlements.policy import (
    collect_governed_fields,
    is_field_visible as policy_is_field_visible,
    merge_features,
)
from fieldops.entitlements.store import ConfigurationStore

logger = logging.getLogger(__name__)


class EntitlementEvaluationError(EntitlementError):
    """
    Raised when policy resolution fails for a reason other than the store.

    Carries a machine-readable error_code for logs and alerts.
    """

    def __init__(
        self,
        user_id: str,
        detail: str,
        cause: Optional[Exception] = None,
    ):
        self.user_id = user_id
        self.detail = detail
        self.cause = cause
        self.error_code = "ENTITLEMENT_EVAL_FAILED"
        super().__init__(f"Entitlement evaluation failed for {user_id}: {detail}")

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "user_id": self.user_id,
            "detail": self.detail,
        }


class EntitlementService:
    """
    Central entitlement service.

    One instance per request. Stateless between calls except for the
    injected collaborators (store, cache).
    """

    def __init__(
        self,
        db_session: Optional[Session] = None,
        cache: Optional[EntitlementCache] = None,
        store: Optional[ConfigurationStore] = None,
    ):
        if store is None:
            if db_session is None:
                raise ValueError("EntitlementService needs a db_session or a store")
            store = ConfigurationStore(db_session)
        self._store = store
        self._cache = cache or get_entitlement_cache()

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    def resolve_effective_policy(self, user_id: str) -> PolicyResult:
        """
        Resolve the effective policy for a user.

        Args:
            user_id: Authenticated user ID

        Returns:
            EffectivePolicy, or NOT_SUBSCRIBED when the user has no active
            subscription

        Raises:
            StoreUnavailableError: The configuration store failed
            EntitlementEvaluationError: Any other resolution failure
        """
        if not user_id:
            raise EntitlementEvaluationError(user_id or "", "user_id is required")

        try:
            cached = self._cache.get(user_id)
            if cached is not None:
                return cached
        except Exception as exc:
            logger.warning("Cache read failed, computing fresh", extra={
                "user_id": user_id, "error": str(exc),
            })

        try:
            result = self._compute(user_id)
        except StoreUnavailableError:
            raise
        except Exception as exc:
            self._emit_support_alert(user_id, exc)
            raise EntitlementEvaluationError(
                user_id,
                "Internal error during entitlement evaluation",
                cause=exc,
            )

        if result is not NOT_SUBSCRIBED:
            try:
                self._cache.set(result)
            except Exception as exc:
                logger.warning("Failed to cache policy", extra={
                    "user_id": user_id, "error": str(exc),
                })

        return result

    def get_user_plan_config(self, user_id: str) -> Optional[EffectivePolicy]:
        """
        Resolve a user's policy for inline checks outside the guard chain.

        Returns:
            EffectivePolicy, or None when the user is not subscribed
        """
        result = self.resolve_effective_policy(user_id)
        if result is NOT_SUBSCRIBED:
            return None
        return result

    def is_field_visible(self, user_id: str, entity: str, field_id: str) -> bool:
        """
        Check field visibility for a user. Unsubscribed users see nothing.
        """
        return policy_is_field_visible(
            self.resolve_effective_policy(user_id), entity, field_id
        )

    def invalidate_user(self, user_id: str, reason: Optional[str] = None) -> bool:
        """Drop a user's cached policy (after override writes)."""
        return self._cache.invalidate(user_id, reason)

    def invalidate_all(self, reason: Optional[str] = None) -> int:
        """Drop every cached policy (after plan writes)."""
        return self._cache.invalidate_all(reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _compute(self, user_id: str) -> PolicyResult:
        plan_id = self._store.get_active_plan_for_user(user_id)
        if plan_id is None:
            logger.info("User has no active subscription", extra={"user_id": user_id})
            return NOT_SUBSCRIBED

        plan = self._store.get_plan(plan_id)
        if plan is None:
            logger.warning(
                "Active subscription references a missing plan",
                extra={"user_id": user_id, "plan_id": plan_id}
            )
            return NOT_SUBSCRIBED

        override = self._store.get_active_override(user_id)
        if override is not None and override.plan_id != plan.id:
            logger.info(
                "Plan override was configured for a different base plan, applying anyway",
                extra={
                    "user_id": user_id,
                    "override_id": override.id,
                    "override_plan_id": override.plan_id,
                    "subscription_plan_id": plan.id,
                }
            )

        features = merge_features(
            plan.features,
            override.features if override else None,
            override.limits if override else None,
        )
        governed = collect_governed_fields(
            plan.features,
            override.features if override else None,
        )

        policy = EffectivePolicy(
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            override_id=override.id if override else None,
            features=features,
            governed_fields=governed,
            resolved_at=datetime.now(timezone.utc).isoformat(),
            source=PolicySource.COMPUTED.value,
        )

        logger.debug("Resolved effective policy", extra={
            "user_id": user_id,
            "plan_id": plan.id,
            "override_id": policy.override_id,
        })
        return policy

    def _emit_support_alert(self, user_id: str, exc: Exception) -> None:
        """
        Emit a support alert for a resolution failure.

        Logs at CRITICAL level with a structured payload so monitoring can
        trigger alerts.
        """
        logger.critical(
            "ENTITLEMENT_EVAL_FAILED - support alert",
            extra={
                "alert_type": "entitlement_eval_failed",
                "user_id": user_id,
                "error_type": type(exc).__name__,
                "error_detail": str(exc),
                "action_required": "Investigate entitlement evaluation failure",
            },
            exc_info=True,
        )


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_user_plan_config(user_id: str, db_session: Session) -> Optional[EffectivePolicy]:
    """
    Module-level convenience for inline policy lookups.

    Creates a service instance with the default cache.
    """
    return EntitlementService(db_session).get_user_plan_config(user_id)


def is_field_visible_for_user(user_id: str, entity: str, field_id: str, db_session: Session) -> bool:
    """Module-level convenience for a single field visibility check."""
    return EntitlementService(db_session).is_field_visible(user_id, entity, field_id)


def invalidate_user_entitlements(user_id: str, reason: Optional[str] = None) -> bool:
    """
    Module-level convenience for cache invalidation.

    Does not require a DB session (cache-only operation).
    """
    deleted = get_entitlement_cache().invalidate(user_id, reason)
    logger.info("Entitlements invalidated (module-level)", extra={
        "user_id": user_id, "reason": reason,
    })
    return deleted


def invalidate_all_entitlements(reason: Optional[str] = None) -> int:
    """Module-level convenience for mass invalidation."""
    return get_entitlement_cache().invalidate_all(reason)
