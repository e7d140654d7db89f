"""
Entitlement models - canonical value types for entitlement evaluation.

Provides:
- AccessLevel: full / read_only / blocked
- FeatureSource: Which resolution step decided a feature
- FeatureGrant: Single resolved feature with source tracking
- OverrideGrant: Snapshot of one per-organization override
- PilotFields: Snapshot of the organization's pilot columns
- EntitlementContext: Immutable snapshot consumed by the resolver

CRITICAL: Every value here is frozen. A request evaluates against one
snapshot and never re-reads storage mid-evaluation.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Canonical enums - single source of truth, import from here
# ---------------------------------------------------------------------------

class AccessLevel(str, Enum):
    """Graded access to a feature."""
    FULL = "full"
    READ_ONLY = "read_only"
    BLOCKED = "blocked"

    def allows_writes(self) -> bool:
        return self is AccessLevel.FULL

    def allows_reads(self) -> bool:
        return self is not AccessLevel.BLOCKED


class FeatureSource(str, Enum):
    """Where a feature decision originated."""
    LOCKED = "locked"
    PILOT = "pilot"
    OVERRIDE = "override"
    STATUS = "status"
    PLAN = "plan"


# ---------------------------------------------------------------------------
# Value objects (frozen dataclasses)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeatureGrant:
    """A single resolved feature decision with provenance."""
    feature_key: str
    granted: bool
    source: FeatureSource

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


@dataclass(frozen=True)
class OverrideGrant:
    """Per-organization override; expires_at None means it never expires."""
    feature_key: str
    granted: bool
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True)
class PilotFields:
    is_pilot: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    converted_to_paid: bool = False


@dataclass(frozen=True)
class EntitlementContext:
    """
    Everything the resolver needs for one organization, read at one point.

    subscription_status is "trialing" when the organization has no
    subscription row. plan_* fields fall back to the lowest-privilege
    catalog plan when no plan could be resolved.
    """
    organization_id: str
    subscription_status: Optional[str]
    plan_slug: str
    plan_name: str
    plan_features: Mapping[str, Union[bool, str]]
    max_assets: int
    max_users: int
    current_assets: int
    current_users: int
    pilot: PilotFields = field(default_factory=PilotFields)
    overrides: Tuple[OverrideGrant, ...] = ()
    evaluated_at: Optional[datetime] = None
    plan_resolved: bool = True

    def find_override(self, feature_key: str) -> Optional[OverrideGrant]:
        for override in self.overrides:
            if override.feature_key == feature_key:
                return override
        return None
