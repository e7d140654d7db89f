"""
Plan Catalog - plans, feature registry and pilot policy from config/plans.json.

Provides:
- CatalogPlan: Immutable description of one plan
- FeatureDefinition: Registry entry for a feature key
- PilotPolicy: Trial length, lock threshold and pilot quotas
- PlanCatalog: Singleton loader for the catalog

CRITICAL: This is the source of truth for plan features and pilot
constants. Do NOT repeat these values elsewhere.
"""

import json
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from threading import Lock

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/plans.json"

DEFAULT_UNLIMITED_QUOTA = 999999


@dataclass(frozen=True)
class PilotPolicy:
    """Pilot lifecycle constants."""

    trial_days: int = 15
    lock_after_days: int = 30
    max_assets: int = 50
    max_users: int = 50
    warning_days: int = 5


@dataclass(frozen=True)
class FeatureDefinition:
    key: str
    title: str
    description: str = ""


@dataclass(frozen=True)
class CatalogPlan:
    """Complete definition of a single plan."""

    slug: str
    name: str
    tier: int
    max_assets: int
    max_users: int
    features: Dict[str, Union[bool, str]] = field(default_factory=dict)
    description: str = ""
    price_monthly_cents: Optional[int] = None
    price_yearly_cents: Optional[int] = None
    purchasable: bool = True
    is_active: bool = True

    def has_feature(self, feature_key: str) -> bool:
        """True only for features explicitly set to true ('on_demand' is not included)."""
        return self.features.get(feature_key) is True

    def get_enabled_features(self) -> List[str]:
        return [key for key, value in self.features.items() if value is True]


class PlanCatalog:
    """
    Singleton loader for the plan catalog.

    Thread-safe with lazy loading and reload support.

    Usage:
        catalog = get_plan_catalog()
        if catalog.get_plan("professional").has_feature("vgp_compliance"):
            ...
    """

    _instance: Optional['PlanCatalog'] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the catalog.

        Args:
            config_path: Optional path to plans.json (defaults to config/plans.json)
        """
        if self._initialized:
            return

        self._config_path = config_path
        self._plans: Dict[str, CatalogPlan] = {}
        self._features: Dict[str, FeatureDefinition] = {}
        self._pilot_policy = PilotPolicy()
        self._default_plan_slug = "starter"
        self._unlimited_quota = DEFAULT_UNLIMITED_QUOTA
        self._compliance_feature = "vgp_compliance"
        self._version: Optional[str] = None
        self._load_lock = Lock()

        self._load_config()
        self._initialized = True

    def _resolve_config_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        env_path = os.getenv("PLAN_CATALOG_PATH")
        if env_path:
            return Path(env_path)

        possible_paths = [
            Path(__file__).parent.parent.parent / "config" / "plans.json",  # backend/config/
            Path(os.getcwd()) / "config" / "plans.json",
            Path(os.getcwd()) / "backend" / "config" / "plans.json",
        ]

        for path in possible_paths:
            if path.exists():
                return path

        raise FileNotFoundError(
            f"plans.json not found in any of: {[str(p) for p in possible_paths]}"
        )

    def _load_config(self) -> None:
        with self._load_lock:
            config_path = self._resolve_config_path()
            logger.info("Loading plan catalog", extra={"path": str(config_path)})

            with open(config_path, "r") as f:
                raw = json.load(f)

            plans = self._parse_plans(raw.get("plans", {}))
            features = self._parse_features(raw.get("features", {}))
            pilot_policy = self._parse_pilot_policy(raw.get("pilot", {}))

            default_plan = raw.get("default_plan", "starter")
            if default_plan not in plans:
                raise ValueError(f"default_plan '{default_plan}' is not defined in plans.json")

            # Swap references only after everything parsed
            self._plans = plans
            self._features = features
            self._pilot_policy = pilot_policy
            self._default_plan_slug = default_plan
            self._unlimited_quota = int(raw.get("unlimited_quota", DEFAULT_UNLIMITED_QUOTA))
            self._compliance_feature = raw.get("compliance_feature", "vgp_compliance")
            self._version = raw.get("version")

            logger.info(
                "Loaded plan catalog",
                extra={"plan_count": len(plans), "feature_count": len(features), "version": self._version},
            )

    @staticmethod
    def _parse_plans(plans_data: Dict[str, Any]) -> Dict[str, CatalogPlan]:
        plans = {}
        for slug, data in plans_data.items():
            plans[slug] = CatalogPlan(
                slug=slug,
                name=data.get("name", slug.title()),
                tier=int(data.get("tier", 0)),
                max_assets=int(data.get("max_assets", 0)),
                max_users=int(data.get("max_users", 0)),
                features=dict(data.get("features", {})),
                description=data.get("description", ""),
                price_monthly_cents=data.get("price_monthly_cents"),
                price_yearly_cents=data.get("price_yearly_cents"),
                purchasable=bool(data.get("purchasable", True)),
                is_active=bool(data.get("is_active", True)),
            )
        return plans

    @staticmethod
    def _parse_features(features_data: Dict[str, Any]) -> Dict[str, FeatureDefinition]:
        return {
            key: FeatureDefinition(
                key=key,
                title=data.get("title", key),
                description=data.get("description", ""),
            )
            for key, data in features_data.items()
        }

    @staticmethod
    def _parse_pilot_policy(pilot_data: Dict[str, Any]) -> PilotPolicy:
        defaults = PilotPolicy()
        return PilotPolicy(
            trial_days=int(pilot_data.get("trial_days", defaults.trial_days)),
            lock_after_days=int(pilot_data.get("lock_after_days", defaults.lock_after_days)),
            max_assets=int(pilot_data.get("max_assets", defaults.max_assets)),
            max_users=int(pilot_data.get("max_users", defaults.max_users)),
            warning_days=int(pilot_data.get("warning_days", defaults.warning_days)),
        )

    def reload(self) -> None:
        """Reload configuration from disk; the previous catalog stays in place on failure."""
        logger.info("Reloading plan catalog")
        try:
            self._load_config()
        except Exception:
            logger.error("Plan catalog reload failed, keeping previous catalog", exc_info=True)
            raise

    @property
    def version(self) -> Optional[str]:
        return self._version

    @property
    def pilot_policy(self) -> PilotPolicy:
        return self._pilot_policy

    @property
    def unlimited_quota(self) -> int:
        return self._unlimited_quota

    @property
    def compliance_feature(self) -> str:
        return self._compliance_feature

    @property
    def default_plan_slug(self) -> str:
        return self._default_plan_slug

    def get_plan(self, slug: str) -> Optional[CatalogPlan]:
        return self._plans.get(slug)

    def get_default_plan(self) -> CatalogPlan:
        """The lowest-privilege plan, used when an organization has no resolvable plan."""
        return self._plans[self._default_plan_slug]

    def get_all_plans(self) -> List[CatalogPlan]:
        """Active plans in tier order."""
        return sorted(
            (plan for plan in self._plans.values() if plan.is_active),
            key=lambda p: p.tier,
        )

    def is_unlimited(self, quota: Optional[int]) -> bool:
        return quota is not None and quota >= self._unlimited_quota

    def get_feature(self, feature_key: str) -> Optional[FeatureDefinition]:
        return self._features.get(feature_key)

    def get_feature_keys(self) -> List[str]:
        return list(self._features)

    def is_known_feature(self, feature_key: str) -> bool:
        return feature_key in self._features

    def get_minimum_plan_for(self, feature_key: str) -> Optional[CatalogPlan]:
        """Lowest-tier active plan that includes the feature (upgrade hint)."""
        for plan in self.get_all_plans():
            if plan.has_feature(feature_key):
                return plan
        return None


def get_plan_catalog(config_path: Optional[str] = None) -> PlanCatalog:
    """Get the singleton PlanCatalog instance."""
    return PlanCatalog(config_path)


def reset_plan_catalog() -> None:
    """
    Reset the singleton instance (for testing).

    WARNING: Only use in tests!
    """
    PlanCatalog._instance = None
