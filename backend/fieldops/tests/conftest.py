"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: SQLite in-memory database with all models
- entitlement settings loaded from a temporary YAML file
- singleton resets (settings loader, policy cache, Redis client)
- make_plan / make_subscription / make_override factories
- make_client: TestClient factory that injects the caller identity via
  X-Test-User / X-Test-Roles headers
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

import pytest
import yaml
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from fieldops.config.entitlements import reset_entitlement_settings
from fieldops.database.session import get_db_session
from fieldops.entitlements.cache import RedisClient, reset_entitlement_cache

# Set test environment
os.environ.setdefault("ENV", "test")


TEST_SETTINGS = {
    "cache_enabled": True,
    "cache_ttl_seconds": 60,
    "public_features": ["dashboard"],
    "public_pages": {"dashboard": "view"},
    "expose_plan_headers": True,
    "default_visible_fields": {
        "clients": ["name", "email"],
        "jobs": ["title", "status"],
    },
}


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_engine():
    """
    Create a fresh SQLite in-memory engine with all tables.

    Function scoped: services commit, so every test gets its own database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from fieldops.db_base import Base
    import fieldops.models  # noqa: F401 - required to register all model metadata

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    """Database session bound to the per-test engine."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()

    yield session

    session.close()


# =============================================================================
# Config and singletons
# =============================================================================

@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("entitlements.yml", {"cache_ttl_seconds": 5})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make


def _reset_singletons():
    reset_entitlement_settings()
    reset_entitlement_cache()
    RedisClient._instance = None


@pytest.fixture(autouse=True)
def entitlement_environment(monkeypatch, make_yaml_config):
    """
    Isolate every test from the process environment.

    Loads TEST_SETTINGS from a temporary YAML file, disables Redis and
    resets the settings, cache and Redis singletons before and after.
    """
    config_path = make_yaml_config("entitlements.yml", TEST_SETTINGS)
    monkeypatch.setenv("ENTITLEMENT_CONFIG_PATH", str(config_path))
    monkeypatch.delenv("ENTITLEMENT_CACHE_TTL", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)

    _reset_singletons()
    yield config_path
    _reset_singletons()


# =============================================================================
# Data factories
# =============================================================================

def _dump(document):
    if document is None or isinstance(document, str):
        return document
    return json.dumps(document)


@pytest.fixture
def make_plan(db_session):
    """Factory creating a committed Plan row."""
    from fieldops.models import Plan

    def _make(name: str = "Pro", features=None, plan_id: Optional[str] = None, **kwargs) -> Plan:
        plan = Plan(name=name, features=_dump(features), **kwargs)
        if plan_id:
            plan.id = plan_id
        db_session.add(plan)
        db_session.commit()
        return plan
    return _make


@pytest.fixture
def make_subscription(db_session):
    """Factory creating a committed UserSubscription row."""
    from fieldops.models import UserSubscription

    def _make(user_id: str, plan_id: str, status: str = "active",
              created_at: Optional[datetime] = None) -> UserSubscription:
        subscription = UserSubscription(
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            start_date=datetime.now(timezone.utc),
        )
        if created_at is not None:
            subscription.created_at = created_at
        db_session.add(subscription)
        db_session.commit()
        return subscription
    return _make


@pytest.fixture
def make_override(db_session):
    """Factory creating a committed PlanOverride row."""
    from fieldops.models import PlanOverride

    def _make(user_id: str, plan_id: str, features=None, limits=None,
              is_active: bool = True):
        override = PlanOverride(
            user_id=user_id,
            plan_id=plan_id,
            features=_dump(features),
            limits=_dump(limits),
            is_active=is_active,
        )
        db_session.add(override)
        db_session.commit()
        return override
    return _make


# =============================================================================
# HTTP
# =============================================================================

def install_test_identity(app: FastAPI) -> None:
    """Copy X-Test-User / X-Test-Roles headers onto request.state."""

    @app.middleware("http")
    async def test_identity(request: Request, call_next):
        user_id = request.headers.get("X-Test-User")
        if user_id:
            request.state.user_id = user_id
            roles = request.headers.get("X-Test-Roles", "")
            request.state.roles = [r for r in roles.split(",") if r]
        return await call_next(request)


@pytest.fixture
def make_client(db_session):
    """
    Factory returning a TestClient for an app that shares db_session.

    Usage:
        client = make_client(app)
        client.get("/api/...", headers={"X-Test-User": "u1"})
    """
    clients = []

    def _override_db():
        yield db_session

    def _make(app: FastAPI) -> TestClient:
        app.dependency_overrides[get_db_session] = _override_db
        install_test_identity(app)
        client = TestClient(app, raise_server_exceptions=False)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: tests that exercise the full FastAPI app")
