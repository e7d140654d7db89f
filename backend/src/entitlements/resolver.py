"""
Entitlement resolver - pure decisions over an EntitlementContext.

Resolution order for a feature (deterministic):
    1. Account locked (pilot_locked)      -> deny
    2. Pilot active                       -> grant every feature
    3. Unexpired override                 -> override.granted
    4. Subscription not active/trialing   -> deny
    5. Plan feature flag                  -> granted only when exactly true

Quota checks are independent of feature checks. The resolver never raises
for missing optional data; the loader already substituted the
lowest-privilege plan.
"""

from datetime import datetime
from typing import Dict, Optional

from src.entitlements.catalog import DEFAULT_UNLIMITED_QUOTA, PilotPolicy
from src.entitlements.lifecycle import PilotState, pilot_state_for, pilot_not_started, days_remaining
from src.entitlements.models import (
    AccessLevel,
    EntitlementContext,
    FeatureGrant,
    FeatureSource,
)
from src.models.base import utcnow
from src.models.subscription import ENTITLING_STATUSES

_ENTITLING_STATUS_VALUES = frozenset(status.value for status in ENTITLING_STATUSES)


class Entitlements:
    """
    Resolved view of one EntitlementContext.

    Usage:
        entitlements = resolve(context, policy=catalog.pilot_policy)
        if entitlements.access_level("vgp_compliance") is AccessLevel.READ_ONLY:
            ...
    """

    def __init__(
        self,
        context: EntitlementContext,
        policy: Optional[PilotPolicy] = None,
        unlimited_quota: int = DEFAULT_UNLIMITED_QUOTA,
        now: Optional[datetime] = None,
    ):
        self.context = context
        self.policy = policy or PilotPolicy()
        self.unlimited_quota = unlimited_quota
        self.now = now or context.evaluated_at or utcnow()
        self.pilot_state = pilot_state_for(context.pilot, self.now, self.policy)
        self._grants: Dict[str, FeatureGrant] = {}

    @property
    def organization_id(self) -> str:
        return self.context.organization_id

    @property
    def plan_slug(self) -> str:
        return self.context.plan_slug

    @property
    def is_locked(self) -> bool:
        return self.pilot_state is PilotState.PILOT_LOCKED

    @property
    def pilot_active(self) -> bool:
        return self.pilot_state is PilotState.PILOT_ACTIVE

    @property
    def pilot_days_remaining(self) -> Optional[int]:
        if not self.context.pilot.is_pilot:
            return None
        return days_remaining(self.context.pilot.end_date, self.now)

    def feature_grant(self, feature_key: str) -> FeatureGrant:
        grant = self._grants.get(feature_key)
        if grant is None:
            grant = self._resolve_feature(feature_key)
            self._grants[feature_key] = grant
        return grant

    def _resolve_feature(self, feature_key: str) -> FeatureGrant:
        if self.is_locked:
            return FeatureGrant(feature_key, False, FeatureSource.LOCKED)

        if self.pilot_active:
            return FeatureGrant(feature_key, True, FeatureSource.PILOT)

        override = self.context.find_override(feature_key)
        if override is not None and not override.is_expired(self.now):
            return FeatureGrant(feature_key, override.granted, FeatureSource.OVERRIDE)

        if self.context.subscription_status not in _ENTITLING_STATUS_VALUES:
            return FeatureGrant(feature_key, False, FeatureSource.STATUS)

        granted = self.context.plan_features.get(feature_key) is True
        return FeatureGrant(feature_key, granted, FeatureSource.PLAN)

    def has_feature(self, feature_key: str) -> bool:
        return self.feature_grant(feature_key).granted

    def access_level(self, feature_key: str) -> AccessLevel:
        """full if granted; read_only for an unlocked pilot past its start date; blocked otherwise."""
        if self.has_feature(feature_key):
            return AccessLevel.FULL
        if self.pilot_state is PilotState.PILOT_GRACE and not pilot_not_started(self.context.pilot, self.now):
            return AccessLevel.READ_ONLY
        return AccessLevel.BLOCKED

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    @property
    def effective_max_assets(self) -> int:
        if self.pilot_active:
            return self.policy.max_assets
        return self.context.max_assets

    @property
    def effective_max_users(self) -> int:
        if self.pilot_active:
            return self.policy.max_users
        return self.context.max_users

    def is_unlimited(self, quota: int) -> bool:
        return quota >= self.unlimited_quota

    def _within_quota(self, current: int, quota: int) -> bool:
        if self.is_locked:
            return False
        if self.is_unlimited(quota):
            return True
        return current < quota

    def can_create_asset(self) -> bool:
        return self._within_quota(self.context.current_assets, self.effective_max_assets)

    def can_invite_user(self) -> bool:
        return self._within_quota(self.context.current_users, self.effective_max_users)

    def asset_limit_reached(self) -> bool:
        quota = self.effective_max_assets
        return not self.is_unlimited(quota) and self.context.current_assets >= quota


def resolve(
    context: EntitlementContext,
    policy: Optional[PilotPolicy] = None,
    unlimited_quota: int = DEFAULT_UNLIMITED_QUOTA,
    now: Optional[datetime] = None,
) -> Entitlements:
    """Resolve a context into an Entitlements view."""
    return Entitlements(context, policy=policy, unlimited_quota=unlimited_quota, now=now)
