"""
Response filter - strips fields the caller's plan hides.

A field is removed only when it is governed for the entity (some
visible_fields list in the base plan or the override mentions it) and the
effective policy does not show it. Fields outside that catalogue, such as
"id", always pass through.

The filter is an explicit pipeline stage: handlers depend on
filter_response_by_plan(entity) and pass their result through it.

    @router.get("/api/clients")
    def list_clients(plan_filter: PlanResponseFilter = Depends(filter_response_by_plan("clients"))):
        return plan_filter(load_clients())

filter_payload never raises; on failure it logs a warning and returns the
payload unchanged. Filtering is idempotent.
"""

import json
import logging
from typing import Any, Optional

from fastapi import Depends
from pydantic import BaseModel

from fieldops.entitlements.middleware import get_optional_request_policy
from fieldops.entitlements.models import EffectivePolicy, PolicyResult
from fieldops.entitlements.policy import is_field_visible

logger = logging.getLogger(__name__)


def _hidden_fields(policy: EffectivePolicy, entity: str) -> frozenset:
    governed = policy.governed_fields.get(entity) or []
    return frozenset(f for f in governed if not is_field_visible(policy, entity, f))


def _strip(value: Any, hidden: frozenset) -> Any:
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {k: v for k, v in value.items() if k not in hidden}
    if isinstance(value, tuple):
        return tuple(_strip(item, hidden) for item in value)
    if isinstance(value, list):
        return [_strip(item, hidden) for item in value]
    return value


def filter_payload(policy: Optional[PolicyResult], entity: str, payload: Any) -> Any:
    """
    Remove hidden fields of an entity from a payload.

    Args:
        policy: Caller's effective policy; anything else passes through
        entity: Entity name, e.g. "clients"
        payload: dict, list of dicts, pydantic model(s), JSON text or bytes

    Returns:
        Filtered payload of the same kind (models become dicts, JSON text
        stays text). Scalars and unparseable text are returned unchanged.
    """
    if not isinstance(policy, EffectivePolicy):
        return payload

    try:
        hidden = _hidden_fields(policy, entity)
        if not hidden:
            return payload

        if isinstance(payload, (str, bytes)):
            try:
                decoded = json.loads(payload)
            except ValueError:
                logger.warning(
                    "Response payload is not JSON, skipping plan filter",
                    extra={"entity": entity, "user_id": policy.user_id}
                )
                return payload
            encoded = json.dumps(_strip(decoded, hidden))
            return encoded.encode("utf-8") if isinstance(payload, bytes) else encoded

        return _strip(payload, hidden)
    except Exception as exc:
        logger.warning(
            "Plan response filter failed, returning payload unchanged",
            extra={
                "entity": entity,
                "user_id": policy.user_id,
                "error_type": type(exc).__name__,
                "error": str(exc),
            }
        )
        return payload


class PlanResponseFilter:
    """Response filter bound to one request's policy and one entity."""

    def __init__(self, policy: Optional[PolicyResult], entity: str):
        self.policy = policy
        self.entity = entity

    def __call__(self, payload: Any) -> Any:
        return filter_payload(self.policy, self.entity, payload)


def filter_response_by_plan(entity: str):
    """
    Dependency factory returning a PlanResponseFilter for the request.

    Anonymous and unsubscribed callers get a pass-through filter.
    """

    def plan_response_filter(
        policy: Optional[PolicyResult] = Depends(get_optional_request_policy),
    ) -> PlanResponseFilter:
        return PlanResponseFilter(policy, entity)

    return plan_response_filter
