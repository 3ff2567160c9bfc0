"""
Tests for the pure policy functions: merge and entitlement queries.

Includes Hypothesis property tests for the default-permissive,
default-deny, override-wins and limit laws.
"""

import pytest
from hypothesis import given, strategies as st

from fieldops.config.entitlements import EntitlementSettings
from fieldops.entitlements.models import (
    NOT_SUBSCRIBED,
    EffectivePolicy,
    FeaturesDocument,
    PageAccess,
)
from fieldops.entitlements.policy import (
    check_limit,
    collect_governed_fields,
    get_limit,
    get_page_access,
    has_permission,
    is_feature_enabled,
    is_field_visible,
    limit_name_for,
    merge_features,
    resource_for,
)

identifiers = st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=12)
flag_maps = st.dictionaries(identifiers, st.booleans(), max_size=8)
permission_maps = st.dictionaries(identifiers, st.booleans(), max_size=8)


def _policy(features: FeaturesDocument, governed=None) -> EffectivePolicy:
    return EffectivePolicy(
        user_id="u1",
        plan_id="plan_pro",
        plan_name="Pro",
        override_id=None,
        features=features,
        governed_fields=governed if governed is not None else collect_governed_fields(features),
        resolved_at="2026-01-01T00:00:00+00:00",
    )


class TestMergeFeatures:
    """Tests for merge_features."""

    def test_override_wins_per_key(self):
        base = FeaturesDocument(flags={"a": True, "b": False})
        override = FeaturesDocument(flags={"b": True})

        merged = merge_features(base, override)

        assert merged.flags == {"a": True, "b": True}

    def test_visible_fields_override_replaces_list(self):
        base = FeaturesDocument(visible_fields={"clients": ["name", "email", "phone"], "jobs": ["title"]})
        override = FeaturesDocument(visible_fields={"clients": ["name"]})

        merged = merge_features(base, override)

        assert merged.visible_fields == {"clients": ["name"], "jobs": ["title"]}

    def test_sections_merge_per_key(self):
        base = FeaturesDocument(
            page_access={"invoices": "view", "reports": "edit"},
            permissions={"export": True, "bulk_delete": False},
            limits={"max_clients": 10, "max_jobs": 20},
        )
        override = FeaturesDocument(
            page_access={"invoices": "edit"},
            permissions={"bulk_delete": True},
            limits={"max_clients": 50},
        )

        merged = merge_features(base, override)

        assert merged.page_access == {"invoices": "edit", "reports": "edit"}
        assert merged.permissions == {"export": True, "bulk_delete": True}
        assert merged.limits == {"max_clients": 50, "max_jobs": 20}

    def test_override_limits_document_applies_last(self):
        base = FeaturesDocument(limits={"max_clients": 10})
        override = FeaturesDocument(limits={"max_clients": 50})

        merged = merge_features(base, override, {"max_clients": -1})

        assert merged.limits == {"max_clients": -1}

    def test_no_override_copies_base(self):
        base = FeaturesDocument(flags={"a": True}, visible_fields={"clients": ["name"]})
        merged = merge_features(base)
        assert merged == base
        assert merged.visible_fields["clients"] is not base.visible_fields["clients"]

    def test_inputs_are_not_mutated(self):
        base = FeaturesDocument(
            flags={"a": True},
            visible_fields={"clients": ["name", "email"]},
            extras={"theme": {"color": "blue"}},
        )
        override = FeaturesDocument(
            flags={"a": False},
            visible_fields={"clients": ["name"]},
            extras={"theme": {"color": "red"}},
        )

        merge_features(base, override, {"max_clients": 3})

        assert base.flags == {"a": True}
        assert base.visible_fields == {"clients": ["name", "email"]}
        assert base.extras == {"theme": {"color": "blue"}}
        assert override.flags == {"a": False}
        assert override.limits == {}

    def test_override_key_moves_between_flags_and_extras(self):
        base = FeaturesDocument(flags={"mode": True}, extras={"label": "basic"})
        override = FeaturesDocument(flags={"label": False}, extras={"mode": "advanced"})

        merged = merge_features(base, override)

        assert merged.flags == {"label": False}
        assert merged.extras == {"mode": "advanced"}

    @given(base=flag_maps, override=flag_maps)
    def test_merge_law_override_wins(self, base, override):
        merged = merge_features(FeaturesDocument(flags=base), FeaturesDocument(flags=override))
        assert merged.flags == {**base, **override}


class TestCollectGovernedFields:
    """Tests for collect_governed_fields."""

    def test_union_in_first_seen_order(self):
        base = FeaturesDocument(visible_fields={"clients": ["name", "email", "phone"]})
        override = FeaturesDocument(visible_fields={"clients": ["name", "notes"], "jobs": ["title"]})

        governed = collect_governed_fields(base, override, None)

        assert governed == {"clients": ["name", "email", "phone", "notes"], "jobs": ["title"]}


class TestFeatureQueries:
    """Tests for is_feature_enabled / has_permission."""

    def test_absent_feature_is_enabled(self):
        assert is_feature_enabled(_policy(FeaturesDocument()), "anything") is True

    def test_only_false_disables(self):
        policy = _policy(FeaturesDocument(flags={"off": False, "zero": 0, "on": True}))
        assert is_feature_enabled(policy, "off") is False
        assert is_feature_enabled(policy, "on") is True
        assert is_feature_enabled(policy, "zero") is True

    @given(features=flag_maps, override=flag_maps, feature_id=identifiers)
    def test_default_permissive_law(self, features, override, feature_id):
        features.pop(feature_id, None)
        override.pop(feature_id, None)
        merged = merge_features(FeaturesDocument(flags=features), FeaturesDocument(flags=override))
        assert is_feature_enabled(_policy(merged), feature_id) is True

    @given(base=permission_maps, override=permission_maps, permission_id=identifiers)
    def test_default_deny_law(self, base, override, permission_id):
        base.pop(permission_id, None)
        override.pop(permission_id, None)
        merged = merge_features(
            FeaturesDocument(permissions=base),
            FeaturesDocument(permissions=override),
        )
        assert has_permission(_policy(merged), permission_id) is False

    def test_permission_requires_true(self):
        policy = _policy(FeaturesDocument(permissions={"export": True, "delete": False}))
        assert has_permission(policy, "export") is True
        assert has_permission(policy, "delete") is False

    def test_not_subscribed_denies(self):
        assert is_feature_enabled(NOT_SUBSCRIBED, "collaborators") is False
        assert has_permission(NOT_SUBSCRIBED, "export") is False

    def test_not_subscribed_public_feature(self):
        settings = EntitlementSettings(public_features=["dashboard"])
        assert is_feature_enabled(NOT_SUBSCRIBED, "dashboard", settings) is True
        assert is_feature_enabled(NOT_SUBSCRIBED, "collaborators", settings) is False

    def test_accepts_bare_document(self):
        assert is_feature_enabled(FeaturesDocument(flags={"a": False}), "a") is False


class TestPageAccess:
    """Tests for get_page_access and PageAccess.satisfies."""

    def test_levels(self):
        policy = _policy(FeaturesDocument(page_access={"invoices": "view", "reports": "edit"}))
        assert get_page_access(policy, "invoices") == PageAccess.VIEW
        assert get_page_access(policy, "reports") == PageAccess.EDIT
        assert get_page_access(policy, "settings") == PageAccess.NONE

    @pytest.mark.parametrize("granted,required,expected", [
        (PageAccess.EDIT, PageAccess.EDIT, True),
        (PageAccess.EDIT, PageAccess.VIEW, True),
        (PageAccess.VIEW, PageAccess.VIEW, True),
        (PageAccess.VIEW, PageAccess.EDIT, False),
        (PageAccess.NONE, PageAccess.VIEW, False),
    ])
    def test_satisfies(self, granted, required, expected):
        assert granted.satisfies(required) is expected

    def test_not_subscribed_uses_public_pages(self):
        settings = EntitlementSettings(public_pages={"dashboard": "view"})
        assert get_page_access(NOT_SUBSCRIBED, "dashboard", settings) == PageAccess.VIEW
        assert get_page_access(NOT_SUBSCRIBED, "invoices", settings) == PageAccess.NONE
        assert get_page_access(NOT_SUBSCRIBED, "dashboard") == PageAccess.NONE


class TestFieldVisibility:
    """Tests for is_field_visible."""

    def test_entity_without_entry_shows_everything(self):
        policy = _policy(FeaturesDocument(visible_fields={"clients": ["name"]}))
        assert is_field_visible(policy, "jobs", "cost") is True

    def test_entity_with_entry_shows_listed_fields_only(self):
        policy = _policy(FeaturesDocument(visible_fields={"clients": ["name"]}))
        assert is_field_visible(policy, "clients", "name") is True
        assert is_field_visible(policy, "clients", "email") is False

    def test_empty_list_hides_everything(self):
        policy = _policy(FeaturesDocument(visible_fields={"clients": []}))
        assert is_field_visible(policy, "clients", "name") is False

    def test_not_subscribed_sees_nothing(self):
        assert is_field_visible(NOT_SUBSCRIBED, "clients", "name") is False


class TestLimits:
    """Tests for get_limit / check_limit."""

    def test_limits_section_wins_over_flag(self):
        policy = _policy(FeaturesDocument(flags={"max_clients": 5}, limits={"max_clients": 10}))
        assert get_limit(policy, "max_clients") == 10

    def test_numeric_flag_is_used_as_limit(self):
        policy = _policy(FeaturesDocument(flags={"max_clients": 5, "max_jobs": True}))
        assert get_limit(policy, "max_clients") == 5
        assert get_limit(policy, "max_jobs") is None

    def test_within_limit(self):
        policy = _policy(FeaturesDocument(limits={"max_clients": 3}))
        result = check_limit(policy, "max_clients", 2)
        assert result.allowed is True
        assert result.to_dict() == {"allowed": True, "current": 2, "limit": 3}

    def test_at_limit_is_denied(self):
        policy = _policy(FeaturesDocument(limits={"max_clients": 3}))
        assert check_limit(policy, "max_clients", 3).allowed is False

    @given(usage=st.integers(min_value=0, max_value=10**9))
    def test_unlimited_and_absent_always_allow(self, usage):
        unlimited = _policy(FeaturesDocument(limits={"max_clients": -1}))
        absent = _policy(FeaturesDocument())

        for policy in (unlimited, absent):
            result = check_limit(policy, "max_clients", usage)
            assert result.allowed is True
            assert result.unlimited is True

    @given(usage=st.integers(min_value=0, max_value=10**9))
    def test_zero_limit_never_allows(self, usage):
        policy = _policy(FeaturesDocument(limits={"max_clients": 0}))
        assert check_limit(policy, "max_clients", usage).allowed is False

    def test_not_subscribed_is_exhausted(self):
        result = check_limit(NOT_SUBSCRIBED, "max_clients", 0)
        assert result.allowed is False
        assert result.limit == 0


class TestLimitNames:
    """Tests for limit_name_for / resource_for."""

    def test_round_trip(self):
        assert limit_name_for("clients") == "max_clients"
        assert limit_name_for("max_clients") == "max_clients"
        assert resource_for("max_clients") == "clients"
        assert resource_for("clients") == "clients"
