"""API route modules."""

from fieldops.api.routes import admin_plans, plan_overrides, plan_configuration

__all__ = ["admin_plans", "plan_overrides", "plan_configuration"]
