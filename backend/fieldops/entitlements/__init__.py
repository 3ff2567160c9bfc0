"""
Plan entitlement engine.

Decides, per authenticated user and per request, which features, pages,
data fields and operations are permitted, and enforces numeric usage
limits. A base subscription plan is merged with an optional per-user
override into an EffectivePolicy, which route guards and the response
filter then apply.

This module provides:
- EntitlementService: resolve and cache effective policies
- merge_features and the entitlement queries (policy module)
- Route guards: require_feature, require_page_access, require_permission,
  check_feature_limit, add_plan_info
- filter_response_by_plan / filter_payload: response field filtering
- Usage counter registry for limit checks

Merge order: base plan -> override features -> override limits
"""

from fieldops.entitlements.models import (
    NOT_SUBSCRIBED,
    EffectivePolicy,
    FeaturesDocument,
    LimitCheck,
    PageAccess,
)
from fieldops.entitlements.errors import (
    EntitlementError,
    EntitlementDeniedError,
    EntitlementInternalError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from fieldops.entitlements.loader import (
    parse_features_document,
    validate_features_document,
    validate_limits_document,
)
from fieldops.entitlements.policy import (
    merge_features,
    is_feature_enabled,
    get_page_access,
    has_permission,
    is_field_visible,
    check_limit,
)
from fieldops.entitlements.service import (
    EntitlementService,
    EntitlementEvaluationError,
    get_user_plan_config,
    is_field_visible_for_user,
    invalidate_user_entitlements,
    invalidate_all_entitlements,
)
from fieldops.entitlements.middleware import (
    require_feature,
    require_page_access,
    require_permission,
    check_feature_limit,
    add_plan_info,
    install_entitlement_handlers,
)
from fieldops.entitlements.response_filter import (
    PlanResponseFilter,
    filter_payload,
    filter_response_by_plan,
)
from fieldops.entitlements.usage import register_usage_counter

__all__ = [
    "NOT_SUBSCRIBED",
    "EffectivePolicy",
    "FeaturesDocument",
    "LimitCheck",
    "PageAccess",
    "EntitlementError",
    "EntitlementDeniedError",
    "EntitlementInternalError",
    "StoreUnavailableError",
    "UnauthenticatedError",
    "parse_features_document",
    "validate_features_document",
    "validate_limits_document",
    "merge_features",
    "is_feature_enabled",
    "get_page_access",
    "has_permission",
    "is_field_visible",
    "check_limit",
    "EntitlementService",
    "EntitlementEvaluationError",
    "get_user_plan_config",
    "is_field_visible_for_user",
    "invalidate_user_entitlements",
    "invalidate_all_entitlements",
    "require_feature",
    "require_page_access",
    "require_permission",
    "check_feature_limit",
    "add_plan_info",
    "install_entitlement_handlers",
    "PlanResponseFilter",
    "filter_payload",
    "filter_response_by_plan",
    "register_usage_counter",
]
