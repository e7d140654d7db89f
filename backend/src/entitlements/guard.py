"""
Feature guard - allow/deny decisions with typed denial reasons.

Two gates:
- require_feature: allowed at any readable access level (full or read_only)
- require_write_access: allowed only at full access

Both are pure functions over a resolved Entitlements view; denials are
returned as values, never raised. The HTTP layer turns a Denied into a
403 upgrade_required response (see src.api.dependencies.entitlements).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from src.entitlements.models import AccessLevel, FeatureSource
from src.entitlements.resolver import Entitlements


class DenialReason(str, Enum):
    ACCOUNT_LOCKED = "account_locked"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    OVERRIDE_REVOKED = "override_revoked"
    UPGRADE_REQUIRED = "upgrade_required"
    READ_ONLY = "read_only"


_REASON_BY_SOURCE = {
    FeatureSource.LOCKED: DenialReason.ACCOUNT_LOCKED,
    FeatureSource.STATUS: DenialReason.SUBSCRIPTION_INACTIVE,
    FeatureSource.OVERRIDE: DenialReason.OVERRIDE_REVOKED,
    FeatureSource.PLAN: DenialReason.UPGRADE_REQUIRED,
}

_MESSAGES = {
    DenialReason.ACCOUNT_LOCKED: "Your pilot has ended. Subscribe to restore access.",
    DenialReason.SUBSCRIPTION_INACTIVE: "Your subscription is not active.",
    DenialReason.OVERRIDE_REVOKED: "This feature has been disabled for your organization.",
    DenialReason.UPGRADE_REQUIRED: "This feature is not included in your current plan.",
    DenialReason.READ_ONLY: "This feature is read-only until you subscribe.",
}


@dataclass(frozen=True)
class Allowed:
    feature: str
    access_level: AccessLevel

    allowed = True

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": True, "feature": self.feature}


@dataclass(frozen=True)
class Denied:
    """A denial with enough context to render an upgrade prompt."""
    feature: str
    reason: DenialReason
    current_plan: str
    access_level: AccessLevel

    allowed = False

    @property
    def message(self) -> str:
        return _MESSAGES[self.reason]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": False,
            "reason": self.reason.value,
            "feature": self.feature,
            "current_plan": self.current_plan,
        }


GuardResult = Union[Allowed, Denied]


def _denial_reason(entitlements: Entitlements, feature_key: str) -> DenialReason:
    grant = entitlements.feature_grant(feature_key)
    return _REASON_BY_SOURCE.get(grant.source, DenialReason.UPGRADE_REQUIRED)


def require_feature(entitlements: Entitlements, feature_key: str) -> GuardResult:
    """Gate: allowed at full or read_only access."""
    level = entitlements.access_level(feature_key)
    if level.allows_reads():
        return Allowed(feature=feature_key, access_level=level)
    return Denied(
        feature=feature_key,
        reason=_denial_reason(entitlements, feature_key),
        current_plan=entitlements.plan_slug,
        access_level=level,
    )


def require_write_access(entitlements: Entitlements, feature_key: str) -> GuardResult:
    """Write gate: like require_feature, but read_only access is denied."""
    level = entitlements.access_level(feature_key)
    if level.allows_writes():
        return Allowed(feature=feature_key, access_level=level)

    if level is AccessLevel.READ_ONLY:
        reason = DenialReason.READ_ONLY
    else:
        reason = _denial_reason(entitlements, feature_key)
    return Denied(
        feature=feature_key,
        reason=reason,
        current_plan=entitlements.plan_slug,
        access_level=level,
    )


def required_plan_hint(catalog, feature_key: str) -> Optional[str]:
    """Slug of the cheapest plan that includes the feature, for upgrade prompts."""
    plan = catalog.get_minimum_plan_for(feature_key)
    return plan.slug if plan else None
