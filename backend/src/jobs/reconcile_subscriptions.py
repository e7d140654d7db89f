"""
Subscription reconciliation job.

Re-reads every live, Stripe-backed subscription from Stripe and applies
it through the synchronizer's upsert path, so local state converges even
if webhooks were missed. Reconciliation writes no ledger rows except a
tombstone for each subscription Stripe no longer knows. The same
stale-event checks as webhook delivery still apply.

Usage:
    python -m src.jobs.reconcile_subscriptions

Deployed as an hourly cron job.
"""

import sys
import time
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.integrations.payments.stripe_client import StripeBillingClient, get_stripe_client
from src.models.subscription import PLAN_BOUND_STATUSES, Subscription
from src.services.billing_errors import PaymentProcessorError
from src.services.billing_sync import BillingEventSynchronizer, SyncOutcome

logger = logging.getLogger(__name__)

# Maximum subscriptions to check per run (Stripe rate limits)
MAX_SUBSCRIPTIONS_PER_RUN = 500

# Pause between Stripe calls
REQUEST_DELAY_SECONDS = 0.1


class ReconciliationStats:
    """Track reconciliation run statistics."""

    def __init__(self):
        self.subscriptions_checked = 0
        self.subscriptions_updated = 0
        self.subscriptions_missing = 0
        self.skipped = 0
        self.errors = 0
        self.start_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "subscriptions_checked": self.subscriptions_checked,
            "subscriptions_updated": self.subscriptions_updated,
            "subscriptions_missing": self.subscriptions_missing,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": duration
        }


def run_reconciliation(
    session: Session,
    client: Optional[StripeBillingClient] = None,
    synchronizer: Optional[BillingEventSynchronizer] = None,
    limit: int = MAX_SUBSCRIPTIONS_PER_RUN,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    Reconcile live subscriptions against Stripe.

    Returns:
        Statistics dictionary with job results
    """
    logger.info("Starting subscription reconciliation job")

    stats = ReconciliationStats()
    client = client or get_stripe_client()
    synchronizer = synchronizer or BillingEventSynchronizer(session)

    candidates = session.query(
        Subscription.organization_id,
        Subscription.stripe_subscription_id,
    ).filter(
        Subscription.stripe_subscription_id.isnot(None),
        Subscription.status.in_(list(PLAN_BOUND_STATUSES)),
    ).order_by(Subscription.updated_at).limit(limit).all()

    logger.info("Found subscriptions to reconcile", extra={"count": len(candidates)})

    for organization_id, stripe_subscription_id in candidates:
        stats.subscriptions_checked += 1
        try:
            remote = client.retrieve_subscription(stripe_subscription_id)
        except PaymentProcessorError as e:
            logger.error("Stripe error during reconciliation", extra={
                "organization_id": organization_id,
                "stripe_subscription_id": stripe_subscription_id,
                "error": str(e),
            })
            stats.errors += 1
            continue

        if remote is None:
            logger.warning("Subscription missing in Stripe, applying deletion", extra={
                "organization_id": organization_id,
                "stripe_subscription_id": stripe_subscription_id,
            })
            stats.subscriptions_missing += 1
            result = synchronizer.reconcile_missing_subscription(organization_id, stripe_subscription_id)
        else:
            metadata = dict(remote.get("metadata") or {})
            metadata.setdefault("organization_id", organization_id)
            remote["metadata"] = metadata
            result = synchronizer.reconcile_subscription(remote)

        if result.outcome is SyncOutcome.APPLIED:
            stats.subscriptions_updated += 1
        elif result.outcome is SyncOutcome.ERROR:
            logger.warning("Reconciliation could not apply subscription", extra={
                "organization_id": organization_id,
                "detail": result.message,
            })
            stats.errors += 1
        else:
            stats.skipped += 1

        if REQUEST_DELAY_SECONDS:
            sleep(REQUEST_DELAY_SECONDS)

    result = stats.to_dict()
    logger.info("Reconciliation job completed", extra=result)
    return result


def main():
    """Entry point for running reconciliation job from command line."""
    from src.database.session import get_db_session_sync

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        for session in get_db_session_sync():
            result = run_reconciliation(session)
            print(f"Reconciliation completed: {result}")
    except Exception as e:
        logger.exception("Reconciliation failed")
        print(f"Reconciliation failed: {e}")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
