"""
Entitlement models - canonical types for the plan entitlement engine.

Provides:
- PageAccess: none / view / edit page access levels
- FeaturesDocument: typed, normalized features document (plan or override)
- EffectivePolicy: merged result of a base plan and an optional override
- NOT_SUBSCRIBED: sentinel returned when a user has no active subscription
- LimitCheck: outcome of a usage limit check
- PlanRecord / OverrideRecord: store rows with documents already parsed

Raw JSON never travels past the storage boundary: the store parses every
document into a FeaturesDocument (see loader.parse_features_document) and
the rest of the engine works on these types only.
"""

import json
from copy import deepcopy
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union

Number = Union[int, float]

# Keys of a features document that carry structured sections rather than
# top-level feature flags.
SECTION_KEYS = ("page_access", "visible_fields", "permissions", "limits")

UNLIMITED = -1


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PageAccess(str, Enum):
    """Access level granted to a page."""
    NONE = "none"
    VIEW = "view"
    EDIT = "edit"

    def satisfies(self, required: "PageAccess") -> bool:
        """Check whether this level is enough for the required one."""
        if self == PageAccess.NONE:
            return False
        if required == PageAccess.EDIT:
            return self == PageAccess.EDIT
        return True


class PolicySource(str, Enum):
    """Where an EffectivePolicy came from."""
    COMPUTED = "computed"
    CACHE = "cache"


# ---------------------------------------------------------------------------
# Value objects (frozen dataclasses)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeaturesDocument:
    """
    Normalized features document.

    flags hold top-level booleans and numbers (feature on/off, optional
    numeric limits such as "max_clients"). extras keep any other unknown
    top-level keys verbatim. An absent key means "inherit from the merge
    base".

    Immutable - safe to cache and share across threads. Never mutate the
    contained dicts; merge_features() always builds new ones.
    """
    flags: Dict[str, Any] = field(default_factory=dict)
    page_access: Dict[str, str] = field(default_factory=dict)
    visible_fields: Dict[str, List[str]] = field(default_factory=dict)
    permissions: Dict[str, bool] = field(default_factory=dict)
    limits: Dict[str, Number] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.flags or self.page_access or self.visible_fields
            or self.permissions or self.limits or self.extras
        )

    def to_dict(self) -> Dict[str, Any]:
        """Render the canonical JSON shape."""
        data: Dict[str, Any] = deepcopy(self.extras)
        data.update(self.flags)
        data["page_access"] = dict(self.page_access)
        data["visible_fields"] = {k: list(v) for k, v in self.visible_fields.items()}
        data["permissions"] = dict(self.permissions)
        data["limits"] = dict(self.limits)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeaturesDocument":
        """
        Rebuild from a canonical dict produced by to_dict().

        Trusts its input; use loader.parse_features_document for anything
        read from storage or supplied by a client.
        """
        flags: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SECTION_KEYS:
                continue
            if isinstance(value, (bool, int, float)):
                flags[key] = value
            else:
                extras[key] = deepcopy(value)
        return cls(
            flags=flags,
            page_access=dict(data.get("page_access") or {}),
            visible_fields={k: list(v) for k, v in (data.get("visible_fields") or {}).items()},
            permissions=dict(data.get("permissions") or {}),
            limits=dict(data.get("limits") or {}),
            extras=extras,
        )


@dataclass(frozen=True)
class EffectivePolicy:
    """
    Resolved entitlement snapshot for a user.

    governed_fields lists, per entity, every field that the base plan or
    the override mentions in visible_fields. The response filter only ever
    strips fields from this catalogue.

    Immutable - safe to cache, serialise, and return from APIs.
    """
    user_id: str
    plan_id: str
    plan_name: Optional[str]
    override_id: Optional[str]
    features: FeaturesDocument
    governed_fields: Dict[str, List[str]]
    resolved_at: str  # ISO-8601
    source: str = PolicySource.COMPUTED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "override_id": self.override_id,
            "features": self.features.to_dict(),
            "governed_fields": {k: list(v) for k, v in self.governed_fields.items()},
            "resolved_at": self.resolved_at,
            "source": self.source,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EffectivePolicy":
        return cls(
            user_id=data["user_id"],
            plan_id=data["plan_id"],
            plan_name=data.get("plan_name"),
            override_id=data.get("override_id"),
            features=FeaturesDocument.from_dict(data.get("features") or {}),
            governed_fields={k: list(v) for k, v in (data.get("governed_fields") or {}).items()},
            resolved_at=data["resolved_at"],
            source=data.get("source", PolicySource.CACHE.value),
        )


class NotSubscribedType:
    """
    Sentinel type for users without an active subscription.

    Use the NOT_SUBSCRIBED singleton and compare with `is`.
    """

    _instance: Optional["NotSubscribedType"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_SUBSCRIBED"

    def __bool__(self) -> bool:
        return False


NOT_SUBSCRIBED = NotSubscribedType()

PolicyResult = Union[EffectivePolicy, NotSubscribedType]


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of a usage limit check. limit is -1 when unlimited."""
    allowed: bool
    current: Number
    limit: Number

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a features or limits document for admin writes."""
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanRecord:
    """A plan row with its features document already parsed."""
    id: str
    name: str
    features: FeaturesDocument
    is_active: bool = True


@dataclass(frozen=True)
class OverrideRecord:
    """An override row with its features and limits documents parsed."""
    id: str
    user_id: str
    plan_id: str
    features: FeaturesDocument
    limits: Dict[str, Number] = field(default_factory=dict)
    is_active: bool = True
