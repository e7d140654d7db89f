"""
Plan seed script.

Upserts `plans` rows from config/plans.json so subscriptions can
reference them. Safe to re-run; existing rows are updated in place.

Usage:
    python -m scripts.seed_plans
    python -m scripts.seed_plans --dry-run (to preview without saving)

Environment variables:
    DATABASE_URL: PostgreSQL connection string (required)
"""

import sys
import logging
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy.exc import SQLAlchemyError

from src.database.session import get_db_session_sync
from src.entitlements.catalog import get_plan_catalog
from src.repositories.plans_repo import PlansRepository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def format_price(cents) -> str:
    if cents is None:
        return "contact sales"
    return f"${cents / 100:,.2f}"


def seed_plans(dry_run: bool = False) -> dict:
    catalog = get_plan_catalog()
    logger.info(f"Catalog version: {catalog.version}")
    logger.info(f"Mode: {'DRY RUN' if dry_run else 'EXECUTION'}")

    for plan in catalog.get_all_plans():
        logger.info(
            f"  {plan.slug:<14} tier={plan.tier} monthly={format_price(plan.price_monthly_cents)} "
            f"yearly={format_price(plan.price_yearly_cents)} assets={plan.max_assets}"
        )

    for session in get_db_session_sync():
        return PlansRepository(session).sync_catalog(catalog, dry_run=dry_run)
    return {}


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Seed plans from config/plans.json")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without saving",
    )
    args = parser.parse_args()

    try:
        counts = seed_plans(dry_run=args.dry_run)
        logger.info(f"Done: {counts}")
    except (SQLAlchemyError, RuntimeError) as e:
        logger.error(f"Seeding failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
