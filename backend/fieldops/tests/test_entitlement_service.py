"""
Tests for EntitlementService policy resolution.

Resolution runs against the SQLite test database through the real
ConfigurationStore; failure paths use mocked stores.
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from fieldops.config.entitlements import EntitlementSettings
from fieldops.entitlements.cache import EntitlementCache, RedisClient
from fieldops.entitlements.errors import StoreUnavailableError
from fieldops.entitlements.models import (
    NOT_SUBSCRIBED,
    EffectivePolicy,
    FeaturesDocument,
    PlanRecord,
)
from fieldops.entitlements.service import (
    EntitlementEvaluationError,
    EntitlementService,
    get_user_plan_config,
    invalidate_all_entitlements,
    invalidate_user_entitlements,
    is_field_visible_for_user,
)
from fieldops.entitlements.store import ConfigurationStore


@pytest.fixture
def cache():
    return EntitlementCache(
        settings=EntitlementSettings(cache_enabled=True, cache_ttl_seconds=60),
        redis_client=RedisClient(),
    )


@pytest.fixture
def service(db_session, cache):
    return EntitlementService(db_session, cache=cache)


class TestResolveEffectivePolicy:
    """Tests for resolve_effective_policy."""

    def test_no_subscription_is_not_subscribed(self, service):
        assert service.resolve_effective_policy("u1") is NOT_SUBSCRIBED

    def test_inactive_subscription_is_not_subscribed(self, service, make_plan, make_subscription):
        plan = make_plan(features={"collaborators": True})
        make_subscription("u1", plan.id, status="cancelled")

        assert service.resolve_effective_policy("u1") is NOT_SUBSCRIBED

    def test_base_plan_only(self, service, make_plan, make_subscription):
        plan = make_plan(name="Basic", features={"collaborators": False, "page_access": {"invoices": "view"}})
        make_subscription("u1", plan.id)

        policy = service.resolve_effective_policy("u1")

        assert isinstance(policy, EffectivePolicy)
        assert policy.plan_id == plan.id
        assert policy.plan_name == "Basic"
        assert policy.override_id is None
        assert policy.features.flags == {"collaborators": False}
        assert policy.features.page_access == {"invoices": "view"}
        assert policy.source == "computed"

    def test_active_override_is_merged(self, service, make_plan, make_subscription, make_override):
        plan = make_plan(features={
            "collaborators": False,
            "visible_fields": {"clients": ["name", "email", "phone"]},
            "limits": {"max_clients": 10},
        })
        make_subscription("u1", plan.id)
        override = make_override(
            "u1", plan.id,
            features={"collaborators": True, "visible_fields": {"clients": ["name"]}},
            limits={"max_clients": 100},
        )

        policy = service.resolve_effective_policy("u1")

        assert policy.override_id == override.id
        assert policy.features.flags["collaborators"] is True
        assert policy.features.visible_fields == {"clients": ["name"]}
        assert policy.features.limits == {"max_clients": 100}
        assert policy.governed_fields == {"clients": ["name", "email", "phone"]}

    def test_inactive_override_behaves_like_no_override(self, service, make_plan, make_subscription, make_override):
        plan = make_plan(features={"collaborators": False})
        make_subscription("u1", plan.id)
        make_override("u1", plan.id, features={"collaborators": True}, is_active=False)

        with_inactive = service.resolve_effective_policy("u1")

        assert with_inactive.override_id is None
        assert with_inactive.features == FeaturesDocument(flags={"collaborators": False})

    def test_newest_active_subscription_wins(self, service, make_plan, make_subscription):
        basic = make_plan(name="Basic", features={"collaborators": False})
        pro = make_plan(name="Pro", features={"collaborators": True})
        now = datetime.now(timezone.utc)
        make_subscription("u1", basic.id, created_at=now - timedelta(days=30))
        make_subscription("u1", pro.id, created_at=now)

        assert service.resolve_effective_policy("u1").plan_id == pro.id

    def test_malformed_plan_document_is_empty(self, service, make_plan, make_subscription, caplog):
        plan = make_plan(features="{broken json")
        make_subscription("u1", plan.id)

        with caplog.at_level(logging.WARNING):
            policy = service.resolve_effective_policy("u1")

        assert policy.features.is_empty()
        assert "not valid JSON" in caplog.text

    def test_override_for_other_plan_still_applies(self, service, make_plan, make_subscription, make_override, caplog):
        basic = make_plan(name="Basic", features={"collaborators": False})
        pro = make_plan(name="Pro")
        make_subscription("u1", basic.id)
        make_override("u1", pro.id, features={"collaborators": True})

        with caplog.at_level(logging.INFO, logger="fieldops.entitlements.service"):
            policy = service.resolve_effective_policy("u1")

        assert policy.plan_id == basic.id
        assert policy.features.flags["collaborators"] is True
        assert "different base plan" in caplog.text

    def test_missing_user_id_is_evaluation_error(self, service):
        with pytest.raises(EntitlementEvaluationError):
            service.resolve_effective_policy("")


class TestCaching:
    """Cache interaction of the resolver."""

    def test_second_resolution_comes_from_cache(self, service, make_plan, make_subscription):
        plan = make_plan(features={"collaborators": True})
        make_subscription("u1", plan.id)

        first = service.resolve_effective_policy("u1")
        second = service.resolve_effective_policy("u1")

        assert first.source == "computed"
        assert second.source == "cache"
        assert second.features == first.features

    def test_not_subscribed_is_not_cached(self, service, cache):
        service.resolve_effective_policy("u1")
        assert cache.get("u1") is None

    def test_invalidate_user_forces_recompute(self, service, make_plan, make_subscription):
        plan = make_plan(features={"collaborators": True})
        make_subscription("u1", plan.id)
        service.resolve_effective_policy("u1")

        assert service.invalidate_user("u1", reason="test") is True
        assert service.resolve_effective_policy("u1").source == "computed"

    def test_cache_read_failure_falls_back_to_compute(self, db_session, make_plan, make_subscription):
        plan = make_plan()
        make_subscription("u1", plan.id)
        broken_cache = MagicMock()
        broken_cache.get.side_effect = RuntimeError("cache down")

        policy = EntitlementService(db_session, cache=broken_cache).resolve_effective_policy("u1")

        assert policy.plan_id == plan.id
        broken_cache.set.assert_called_once()


class TestFailures:
    """Store and evaluation failures never produce a policy."""

    def test_store_failure_propagates(self, db_session, cache):
        service = EntitlementService(db_session, cache=cache)
        service._store.subscriptions.get_active_for_user = MagicMock(
            side_effect=OperationalError("SELECT", {}, Exception("db down"))
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            service.resolve_effective_policy("u1")

        assert exc_info.value.operation == "get_active_plan_for_user"

    def test_unexpected_error_is_evaluation_error(self, cache, caplog):
        store = MagicMock(spec=ConfigurationStore)
        store.get_active_plan_for_user.return_value = "plan_pro"
        store.get_plan.side_effect = KeyError("features")
        service = EntitlementService(store=store, cache=cache)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(EntitlementEvaluationError) as exc_info:
                service.resolve_effective_policy("u1")

        assert exc_info.value.to_dict()["error_code"] == "ENTITLEMENT_EVAL_FAILED"
        assert any(getattr(r, "alert_type", None) == "entitlement_eval_failed" for r in caplog.records)

    def test_missing_plan_row_is_not_subscribed(self, cache):
        store = MagicMock(spec=ConfigurationStore)
        store.get_active_plan_for_user.return_value = "plan_gone"
        store.get_plan.return_value = None

        service = EntitlementService(store=store, cache=cache)

        assert service.resolve_effective_policy("u1") is NOT_SUBSCRIBED

    def test_requires_session_or_store(self):
        with pytest.raises(ValueError):
            EntitlementService()


class TestUtilityCalls:
    """Module-level helpers for inline checks."""

    def test_get_user_plan_config(self, db_session, make_plan, make_subscription):
        plan = make_plan(features={"collaborators": True})
        make_subscription("u1", plan.id)

        assert get_user_plan_config("u1", db_session).plan_id == plan.id
        assert get_user_plan_config("u2", db_session) is None

    def test_is_field_visible_for_user(self, db_session, make_plan, make_subscription):
        plan = make_plan(features={"visible_fields": {"clients": ["name"]}})
        make_subscription("u1", plan.id)

        assert is_field_visible_for_user("u1", "clients", "name", db_session) is True
        assert is_field_visible_for_user("u1", "clients", "email", db_session) is False
        assert is_field_visible_for_user("u1", "jobs", "cost", db_session) is True
        assert is_field_visible_for_user("u2", "clients", "name", db_session) is False

    def test_module_level_invalidation(self, db_session, make_plan, make_subscription):
        plan = make_plan()
        make_subscription("u1", plan.id)
        make_subscription("u2", plan.id)
        get_user_plan_config("u1", db_session)
        get_user_plan_config("u2", db_session)

        assert invalidate_user_entitlements("u1", reason="test") is True
        assert invalidate_all_entitlements(reason="test") == 1


class TestConfigurationStore:
    """Tests for the storage boundary."""

    def test_get_plan_parses_document(self, db_session, make_plan):
        plan = make_plan(features={"collaborators": False})

        record = ConfigurationStore(db_session).get_plan(plan.id)

        assert isinstance(record, PlanRecord)
        assert record.features.flags == {"collaborators": False}

    def test_get_active_override_parses_limits(self, db_session, make_plan, make_override):
        plan = make_plan()
        make_override("u1", plan.id, limits={"max_clients": 5, "bad": "x"})

        record = ConfigurationStore(db_session).get_active_override("u1")

        assert record.limits == {"max_clients": 5}
        assert ConfigurationStore(db_session).get_active_override("u2") is None
