"""Configuration loaders."""

from fieldops.config.entitlements import (
    EntitlementSettings,
    EntitlementConfigLoader,
    get_entitlement_settings,
    reset_entitlement_settings,
)

__all__ = [
    "EntitlementSettings",
    "EntitlementConfigLoader",
    "get_entitlement_settings",
    "reset_entitlement_settings",
]
