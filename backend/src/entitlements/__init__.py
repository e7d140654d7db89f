"""
Entitlement engine: plan catalog, pilot lifecycle, context loading,
resolution and feature gates.

Resolution order: locked -> pilot -> override -> status -> plan
"""

from src.entitlements.catalog import (
    CatalogPlan,
    PilotPolicy,
    PlanCatalog,
    get_plan_catalog,
    reset_plan_catalog,
)
from src.entitlements.models import (
    AccessLevel,
    EntitlementContext,
    FeatureGrant,
    FeatureSource,
    OverrideGrant,
    PilotFields,
)
from src.entitlements.lifecycle import (
    PilotState,
    derive_pilot_state,
    days_remaining,
    mark_converted,
    start_pilot,
)
from src.entitlements.resolver import Entitlements, resolve
from src.entitlements.context_loader import EntitlementContextLoader
from src.entitlements.guard import (
    Allowed,
    Denied,
    DenialReason,
    require_feature,
    require_write_access,
)
from src.entitlements.errors import (
    EntitlementError,
    OrganizationNotFoundError,
    UpgradeRequiredError,
)

__all__ = [
    "CatalogPlan",
    "PilotPolicy",
    "PlanCatalog",
    "get_plan_catalog",
    "reset_plan_catalog",
    "AccessLevel",
    "EntitlementContext",
    "FeatureGrant",
    "FeatureSource",
    "OverrideGrant",
    "PilotFields",
    "PilotState",
    "derive_pilot_state",
    "days_remaining",
    "mark_converted",
    "start_pilot",
    "Entitlements",
    "resolve",
    "EntitlementContextLoader",
    "Allowed",
    "Denied",
    "DenialReason",
    "require_feature",
    "require_write_access",
    "EntitlementError",
    "OrganizationNotFoundError",
    "UpgradeRequiredError",
]
