"""
Stripe price table loader.

Loads config/stripe_prices.yml, the versioned lookup table between
catalog plans/billing cycles and Stripe price ids. The YAML names an
environment variable per entry; the price ids themselves are
environment-specific and live only in the environment.

Consumers:
  - CheckoutService: plan + cycle -> price id
  - BillingEventSynchronizer: price id -> plan + cycle
  - Webhook config probe: which variables are set

Usage:
    from src.config.stripe_prices import get_price_table

    table = get_price_table()
    price_id = table.price_for("professional", "yearly")
    entry = table.plan_for_price("price_123")
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

BILLING_CYCLES = ("monthly", "yearly")


@dataclass(frozen=True)
class PriceEntry:
    plan_slug: str
    billing_cycle: str
    env_var: str
    price_id: Optional[str]


class PriceTable:
    """
    Thread-safe singleton loader for config/stripe_prices.yml.

    Lookups go both ways: (plan, cycle) -> price id and price id -> entry.
    """

    _instance: Optional["PriceTable"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._environ = environ
        self._version: Optional[Any] = None
        self._entries: Dict[Tuple[str, str], PriceEntry] = {}
        self._by_price: Dict[str, PriceEntry] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    # ------------------------------------------------------------------
    # Config resolution
    # ------------------------------------------------------------------

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent / "config" / "stripe_prices.yml",  # backend/config/
            Path(os.getcwd()) / "config" / "stripe_prices.yml",
            Path(os.getcwd()) / "backend" / "config" / "stripe_prices.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"stripe_prices.yml not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            path = self._resolve_path()
            logger.info("Loading Stripe price table from %s", path)

            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}

            environ = self._environ if self._environ is not None else os.environ
            entries: Dict[Tuple[str, str], PriceEntry] = {}
            by_price: Dict[str, PriceEntry] = {}

            for plan_slug, cycles in (raw.get("prices") or {}).items():
                for cycle, env_var in (cycles or {}).items():
                    if cycle not in BILLING_CYCLES:
                        raise ValueError(f"Unknown billing cycle '{cycle}' for plan '{plan_slug}'")
                    price_id = environ.get(env_var) or None
                    entry = PriceEntry(plan_slug, cycle, env_var, price_id)
                    entries[(plan_slug, cycle)] = entry
                    if price_id:
                        if price_id in by_price:
                            raise ValueError(f"Price id from {env_var} is already mapped")
                        by_price[price_id] = entry
                    else:
                        logger.warning(
                            "Stripe price not configured",
                            extra={"plan": plan_slug, "billing_cycle": cycle, "env_var": env_var},
                        )

            self._version = raw.get("version")
            self._entries = entries
            self._by_price = by_price

            logger.info(
                "Loaded Stripe price table version=%s with %d configured prices",
                self._version,
                len(by_price),
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the YAML and environment (e.g. after a deploy-time change)."""
        self._load()

    @property
    def version(self) -> Optional[Any]:
        return self._version

    def price_for(self, plan_slug: str, billing_cycle: str) -> Optional[str]:
        entry = self._entries.get((plan_slug, billing_cycle))
        return entry.price_id if entry else None

    def plan_for_price(self, price_id: Optional[str]) -> Optional[PriceEntry]:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def has_plan(self, plan_slug: str) -> bool:
        return any(slug == plan_slug for slug, _ in self._entries)

    def entries(self) -> List[PriceEntry]:
        return list(self._entries.values())

    def env_status(self) -> Dict[str, bool]:
        """Environment variable name -> whether it is set (values never exposed)."""
        return {entry.env_var: entry.price_id is not None for entry in self._entries.values()}


def get_price_table(config_path: Optional[str] = None) -> PriceTable:
    """Get the singleton PriceTable instance."""
    return PriceTable(config_path)


def reset_price_table() -> None:
    """Reset the singleton (for tests only)."""
    PriceTable._instance = None
