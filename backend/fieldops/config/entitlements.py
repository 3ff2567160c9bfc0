"""
Entitlement engine configuration loader.

Loads cache, public allow-list and plan-header settings from
config/entitlements.yml. Environment variables take precedence over the
file for deployment-specific values.

Consumers:
  - EntitlementCache: TTL and enable switch
  - Enforcement guards: public features/pages for unsubscribed users
  - add_plan_info: header exposure switch
  - Plan configuration route: default visible fields

Usage:
    from fieldops.config.entitlements import get_entitlement_settings

    settings = get_entitlement_settings()
    settings.cache_ttl_seconds  # 60
    settings.public_pages.get("dashboard")  # "view"
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60
_PAGE_LEVELS = ("none", "view", "edit")


@dataclass(frozen=True)
class EntitlementSettings:
    """Immutable snapshot of entitlement engine settings."""
    cache_enabled: bool = True
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    public_features: List[str] = field(default_factory=list)
    public_pages: Dict[str, str] = field(default_factory=dict)
    expose_plan_headers: bool = True
    default_visible_fields: Dict[str, List[str]] = field(default_factory=dict)

    def is_public_feature(self, feature_id: str) -> bool:
        return feature_id in self.public_features


def _coerce_ttl(value: Any, fallback: int) -> int:
    try:
        ttl = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid entitlement cache TTL %r, using %d", value, fallback)
        return fallback
    return max(ttl, 0)


def _build_settings(raw: Dict[str, Any]) -> EntitlementSettings:
    ttl = _coerce_ttl(raw.get("cache_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS),
                      DEFAULT_CACHE_TTL_SECONDS)
    env_ttl = os.getenv("ENTITLEMENT_CACHE_TTL")
    if env_ttl:
        ttl = _coerce_ttl(env_ttl, ttl)

    public_pages = {}
    for page_id, level in (raw.get("public_pages") or {}).items():
        if level in _PAGE_LEVELS:
            public_pages[str(page_id)] = level
        else:
            logger.warning(
                "Ignoring public page with invalid access level",
                extra={"page_id": page_id, "level": level}
            )

    default_visible_fields = {
        str(entity): [str(f) for f in fields]
        for entity, fields in (raw.get("default_visible_fields") or {}).items()
        if isinstance(fields, list)
    }

    return EntitlementSettings(
        cache_enabled=bool(raw.get("cache_enabled", True)),
        cache_ttl_seconds=ttl,
        public_features=[str(f) for f in (raw.get("public_features") or [])],
        public_pages=public_pages,
        expose_plan_headers=bool(raw.get("expose_plan_headers", True)),
        default_visible_fields=default_visible_fields,
    )


class EntitlementConfigLoader:
    """
    Thread-safe singleton loader for config/entitlements.yml.

    Falls back to built-in defaults when the file is missing.
    """

    _instance: Optional["EntitlementConfigLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path or os.getenv("ENTITLEMENT_CONFIG_PATH")
        self._settings = EntitlementSettings()
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent.parent / "config" / "entitlements.yml",
            Path(os.getcwd()) / "config" / "entitlements.yml",
            Path(os.getcwd()) / ".." / "config" / "entitlements.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"entitlements.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            try:
                path = self._resolve_path()
                logger.info("Loading entitlement settings from %s", path)

                with open(path, "r") as f:
                    raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                logger.warning("entitlements.yml not found, using fallback defaults")
                raw = {}
            except yaml.YAMLError as e:
                logger.warning(
                    "entitlements.yml is not valid YAML, using fallback defaults",
                    extra={"error": str(e)}
                )
                raw = {}

            if not isinstance(raw, dict):
                logger.warning("entitlements.yml must contain a mapping, using fallback defaults")
                raw = {}

            self._settings = _build_settings(raw)

            logger.info(
                "Loaded entitlement settings: ttl=%ds public_features=%d public_pages=%d",
                self._settings.cache_ttl_seconds,
                len(self._settings.public_features),
                len(self._settings.public_pages),
            )

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    @property
    def settings(self) -> EntitlementSettings:
        return self._settings


def get_entitlement_settings() -> EntitlementSettings:
    """Get the current entitlement settings from the singleton loader."""
    return EntitlementConfigLoader().settings


def reset_entitlement_settings() -> None:
    """Reset the singleton loader (for testing)."""
    EntitlementConfigLoader._instance = None
