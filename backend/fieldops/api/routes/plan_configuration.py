"""
Plan configuration route for client apps.

Clients use the caller's effective policy to hide navigation entries and
form fields up front; the server still enforces every check.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fieldops.config.entitlements import EntitlementSettings, get_entitlement_settings
from fieldops.entitlements.middleware import add_plan_info, get_request_policy
from fieldops.entitlements.models import EffectivePolicy, PolicyResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["plan-configuration"])


class PlanConfigurationResponse(BaseModel):
    """Effective plan configuration of the caller."""
    plan_id: Optional[str]
    plan_name: Optional[str] = None
    override_id: Optional[str] = None
    features: Dict[str, Any]
    visible_fields: Dict[str, List[str]]
    resolved_at: Optional[str] = None


@router.get("/plan-configuration", response_model=PlanConfigurationResponse)
def get_plan_configuration(
    request: Request,
    policy: PolicyResult = Depends(get_request_policy),
    settings: EntitlementSettings = Depends(get_entitlement_settings),
    _plan_headers: None = Depends(add_plan_info),
):
    """
    Return the caller's effective plan configuration.

    Unsubscribed callers get an empty feature set and the configured
    default field lists.
    """
    if not isinstance(policy, EffectivePolicy):
        logger.info("Plan configuration requested without subscription", extra={
            "path": request.url.path
        })
        return PlanConfigurationResponse(
            plan_id=None,
            features={},
            visible_fields={k: list(v) for k, v in settings.default_visible_fields.items()},
        )

    return PlanConfigurationResponse(
        plan_id=policy.plan_id,
        plan_name=policy.plan_name,
        override_id=policy.override_id,
        features=policy.features.to_dict(),
        visible_fields={k: list(v) for k, v in policy.features.visible_fields.items()},
        resolved_at=policy.resolved_at,
    )
