"""
Pure policy functions: merging and entitlement queries.

Provides:
- merge_features(): base plan + override -> effective features document
- collect_governed_fields(): per-entity catalogue of governed fields
- is_feature_enabled / get_page_access / has_permission / is_field_visible
- get_limit / check_limit

Merge rules (override wins at the per-key level):
    flags, extras          -> override key replaces base key
    page_access            -> per page
    permissions            -> per permission
    limits                 -> per limit name; the override's dedicated
                              limits document is applied last
    visible_fields         -> per entity, override list REPLACES base list

Query defaults:
    feature absent         -> enabled (only a literal False disables)
    page absent            -> "none"
    permission absent      -> denied
    entity absent          -> every field visible
    limit absent or -1     -> unlimited

NOT_SUBSCRIBED denies every query. Guards may pass EntitlementSettings so
the public allow-list can open selected features and pages.

Every function here is pure and never mutates its inputs.
"""

from copy import deepcopy
from typing import Dict, List, Optional, Union

from fieldops.config.entitlements import EntitlementSettings
from fieldops.entitlements.models import (
    EffectivePolicy,
    FeaturesDocument,
    LimitCheck,
    NotSubscribedType,
    Number,
    PageAccess,
    UNLIMITED,
)

PolicyLike = Union[EffectivePolicy, FeaturesDocument, NotSubscribedType]

LIMIT_PREFIX = "max_"


def merge_features(
    base: FeaturesDocument,
    override: Optional[FeaturesDocument] = None,
    override_limits: Optional[Dict[str, Number]] = None,
) -> FeaturesDocument:
    """
    Merge an override document over a base plan document.

    Args:
        base: Base plan features
        override: Override features (None = no override)
        override_limits: Override's dedicated limits document, applied last

    Returns:
        New FeaturesDocument; neither input is modified.
    """
    override = override or FeaturesDocument()

    flags = dict(base.flags)
    extras = deepcopy(base.extras)
    for key, value in override.flags.items():
        extras.pop(key, None)
        flags[key] = value
    for key, value in override.extras.items():
        flags.pop(key, None)
        extras[key] = deepcopy(value)

    visible_fields = {entity: list(fields) for entity, fields in base.visible_fields.items()}
    for entity, fields in override.visible_fields.items():
        visible_fields[entity] = list(fields)

    limits = dict(base.limits)
    limits.update(override.limits)
    limits.update(override_limits or {})

    return FeaturesDocument(
        flags=flags,
        page_access={**base.page_access, **override.page_access},
        visible_fields=visible_fields,
        permissions={**base.permissions, **override.permissions},
        limits=limits,
        extras=extras,
    )


def collect_governed_fields(*documents: Optional[FeaturesDocument]) -> Dict[str, List[str]]:
    """
    Union of visible_fields lists per entity, in first-seen order.

    A field is governed when any of the documents mentions it; the response
    filter never touches fields outside this catalogue.
    """
    governed: Dict[str, List[str]] = {}
    for document in documents:
        if document is None:
            continue
        for entity, fields in document.visible_fields.items():
            seen = governed.setdefault(entity, [])
            for field_id in fields:
                if field_id not in seen:
                    seen.append(field_id)
    return governed


def _features(policy: PolicyLike) -> Optional[FeaturesDocument]:
    if isinstance(policy, EffectivePolicy):
        return policy.features
    if isinstance(policy, FeaturesDocument):
        return policy
    return None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def is_feature_enabled(
    policy: PolicyLike,
    feature_id: str,
    settings: Optional[EntitlementSettings] = None,
) -> bool:
    """Check a feature flag. Absent flags are enabled; only False disables."""
    features = _features(policy)
    if features is None:
        return settings is not None and settings.is_public_feature(feature_id)
    return features.flags.get(feature_id) is not False


def get_page_access(
    policy: PolicyLike,
    page_id: str,
    settings: Optional[EntitlementSettings] = None,
) -> PageAccess:
    """Resolve the access level for a page. Absent pages resolve to NONE."""
    features = _features(policy)
    if features is None:
        if settings is None:
            return PageAccess.NONE
        return PageAccess(settings.public_pages.get(page_id, PageAccess.NONE.value))
    return PageAccess(features.page_access.get(page_id, PageAccess.NONE.value))


def has_permission(policy: PolicyLike, permission_id: str) -> bool:
    """Check an operational permission. Absent permissions are denied."""
    features = _features(policy)
    if features is None:
        return False
    return features.permissions.get(permission_id) is True


def is_field_visible(policy: PolicyLike, entity: str, field_id: str) -> bool:
    """
    Check whether a field of an entity is visible.

    An entity without a visible_fields entry shows every field; an entity
    with one shows exactly the listed fields.
    """
    features = _features(policy)
    if features is None:
        return False
    fields = features.visible_fields.get(entity)
    if fields is None:
        return True
    return field_id in fields


def get_limit(policy: PolicyLike, limit_name: str) -> Optional[Number]:
    """
    Look up a numeric limit.

    limits[limit_name] wins; otherwise a top-level numeric flag with the
    same name (e.g. "max_clients": 10) is used.

    Returns:
        The configured number, or None when no limit is configured
    """
    features = _features(policy)
    if features is None:
        return None
    if limit_name in features.limits:
        return features.limits[limit_name]
    flag = features.flags.get(limit_name)
    if isinstance(flag, (int, float)) and not isinstance(flag, bool):
        return flag
    return None


def check_limit(policy: PolicyLike, limit_name: str, current_usage: Number) -> LimitCheck:
    """
    Check current usage against a limit.

    Absent or -1 limits always allow and report limit -1. Otherwise the
    check allows while current_usage < limit, so a limit of 0 never allows.
    """
    if _features(policy) is None:
        return LimitCheck(allowed=False, current=current_usage, limit=0)

    limit = get_limit(policy, limit_name)
    if limit is None or limit == UNLIMITED:
        return LimitCheck(allowed=True, current=current_usage, limit=UNLIMITED)
    return LimitCheck(allowed=current_usage < limit, current=current_usage, limit=limit)


def limit_name_for(resource: str) -> str:
    """Map a resource name to its limit key: "clients" -> "max_clients"."""
    if resource.startswith(LIMIT_PREFIX):
        return resource
    return f"{LIMIT_PREFIX}{resource}"


def resource_for(limit_name: str) -> str:
    """Inverse of limit_name_for: "max_clients" -> "clients"."""
    if limit_name.startswith(LIMIT_PREFIX):
        return limit_name[len(LIMIT_PREFIX):]
    return limit_name
