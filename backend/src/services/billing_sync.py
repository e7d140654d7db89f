"""
Billing event synchronizer with idempotency support.

Applies verified Stripe events to subscription state with:
- Event deduplication through the billing_events ledger
- Per-organization serialization (organization row locked FOR UPDATE)
- Stale / out-of-order event protection
- Ledger write in the same transaction as the side effects

Ledger policy:
- Side effects and ledger row commit together. A storage failure rolls
  both back and propagates, so Stripe's retry re-applies the event.
- A verified event that cannot be applied (no organization, unmapped
  price) is recorded as FAILED and acknowledged, so a poison event is
  not redelivered forever.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.stripe_prices import PriceTable, get_price_table
from src.entitlements.catalog import PlanCatalog, get_plan_catalog
from src.entitlements.lifecycle import PilotState, derive_pilot_state, mark_converted
from src.models.base import as_utc, utcnow
from src.models.billing_event import BillingEvent, BillingEventOutcome
from src.models.organization import Organization
from src.models.plan import Plan
from src.models.subscription import (
    BillingCycle,
    PLAN_BOUND_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from src.services.billing_events import BillingEventKind, ProcessorEvent, map_stripe_status

logger = logging.getLogger(__name__)

SUBSCRIPTION_DELETED_TYPE = "customer.subscription.deleted"


class SyncOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of applying one processor event."""
    outcome: SyncOutcome
    event_id: str
    event_type: str
    message: str
    organization_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @property
    def duplicate(self) -> bool:
        return self.outcome is SyncOutcome.DUPLICATE


@dataclass
class _Handled:
    outcome: BillingEventOutcome
    message: str
    organization_id: Optional[str] = None
    subscription_id: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    invoice_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


_SYNC_OUTCOME = {
    BillingEventOutcome.APPLIED: SyncOutcome.APPLIED,
    BillingEventOutcome.IGNORED: SyncOutcome.IGNORED,
    BillingEventOutcome.FAILED: SyncOutcome.ERROR,
}


class BillingEventSynchronizer:
    """
    Applies Stripe events to organizations and subscriptions exactly once.

    Usage:
        synchronizer = BillingEventSynchronizer(db)
        result = synchronizer.apply(ProcessorEvent.from_payload(payload))
    """

    def __init__(
        self,
        db_session: Session,
        catalog: Optional[PlanCatalog] = None,
        prices: Optional[PriceTable] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db_session
        self.catalog = catalog or get_plan_catalog()
        self.prices = prices or get_price_table()
        self._clock = clock
        self._handlers = {
            BillingEventKind.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            BillingEventKind.SUBSCRIPTION_CREATED: self._handle_subscription_changed,
            BillingEventKind.SUBSCRIPTION_UPDATED: self._handle_subscription_changed,
            BillingEventKind.SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            BillingEventKind.INVOICE_PAID: self._handle_invoice_paid,
            BillingEventKind.INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
            BillingEventKind.UNKNOWN: self._handle_unknown,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(self, event: ProcessorEvent) -> SyncResult:
        """
        Apply one verified event.

        Returns:
            SyncResult (APPLIED, DUPLICATE, IGNORED or ERROR)

        Raises:
            SQLAlchemyError: On storage failure (nothing is recorded)
        """
        if self._is_duplicate(event.event_id):
            logger.info("Duplicate billing event skipped", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
            })
            return SyncResult(
                outcome=SyncOutcome.DUPLICATE,
                event_id=event.event_id,
                event_type=event.event_type,
                message="Duplicate event - already processed",
            )

        try:
            handled = self._handlers[event.kind](event)
            self._record_event(event, handled)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self._is_duplicate(event.event_id):
                # A concurrent delivery of the same event committed first
                logger.info("Concurrent duplicate billing event", extra={"event_id": event.event_id})
                return SyncResult(
                    outcome=SyncOutcome.DUPLICATE,
                    event_id=event.event_id,
                    event_type=event.event_type,
                    message="Duplicate event - already processed",
                )
            logger.error("Integrity error applying billing event", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
            }, exc_info=True)
            raise
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Storage error applying billing event", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
            }, exc_info=True)
            raise

        log = logger.warning if handled.outcome is BillingEventOutcome.FAILED else logger.info
        log("Billing event processed", extra={
            "event_id": event.event_id,
            "event_type": event.event_type,
            "outcome": handled.outcome.value,
            "organization_id": handled.organization_id,
            "detail": handled.message,
        })

        return SyncResult(
            outcome=_SYNC_OUTCOME[handled.outcome],
            event_id=event.event_id,
            event_type=event.event_type,
            message=handled.message,
            organization_id=handled.organization_id,
            subscription_id=handled.subscription_id,
        )

    def reconcile_subscription(self, stripe_subscription: Dict[str, Any]) -> SyncResult:
        """
        Apply a subscription fetched from Stripe, without a ledger entry.

        Used by the reconciliation job; goes through the same upsert path
        (and the same stale checks) as subscription.updated.
        """
        event = ProcessorEvent(
            event_id=f"reconcile:{stripe_subscription.get('id')}",
            event_type="customer.subscription.updated",
            kind=BillingEventKind.SUBSCRIPTION_UPDATED,
            created=self._clock(),
            data=stripe_subscription,
        )
        return self._apply_unrecorded(event)

    def reconcile_missing_subscription(self, organization_id: str, stripe_subscription_id: str) -> SyncResult:
        """
        Apply a deletion for a subscription Stripe no longer knows.

        An applied deletion is recorded as a ledger tombstone so that a late
        event for the same subscription is rejected as stale.
        """
        event = ProcessorEvent(
            event_id=f"reconcile:deleted:{stripe_subscription_id}",
            event_type=SUBSCRIPTION_DELETED_TYPE,
            kind=BillingEventKind.SUBSCRIPTION_DELETED,
            created=self._clock(),
            data={"id": stripe_subscription_id, "metadata": {"organization_id": organization_id}},
        )
        return self._apply_unrecorded(event, tombstone=True)

    def _apply_unrecorded(self, event: ProcessorEvent, tombstone: bool = False) -> SyncResult:
        try:
            handled = self._handlers[event.kind](event)
            if (
                tombstone
                and handled.outcome is BillingEventOutcome.APPLIED
                and not self._is_duplicate(event.event_id)
            ):
                self._record_event(event, handled)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return SyncResult(
            outcome=_SYNC_OUTCOME[handled.outcome],
            event_id=event.event_id,
            event_type=event.event_type,
            message=handled.message,
            organization_id=handled.organization_id,
            subscription_id=handled.subscription_id,
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def _is_duplicate(self, event_id: str) -> bool:
        existing = self.db.query(BillingEvent.id).filter(
            BillingEvent.stripe_event_id == event_id
        ).first()
        return existing is not None

    def _record_event(self, event: ProcessorEvent, handled: _Handled) -> None:
        payload_str = json.dumps(event.data, sort_keys=True, default=str)
        self.db.add(BillingEvent(
            stripe_event_id=event.event_id,
            event_type=event.event_type,
            organization_id=handled.organization_id,
            stripe_subscription_id=event.subscription_id,
            stripe_invoice_id=handled.invoice_id,
            amount_cents=handled.amount_cents,
            currency=handled.currency,
            outcome=handled.outcome.value,
            detail=None if handled.outcome is BillingEventOutcome.APPLIED else handled.message,
            payload_hash=hashlib.sha256(payload_str.encode()).hexdigest(),
            extra_metadata=handled.metadata or None,
            occurred_at=event.created,
            processed_at=self._clock(),
        ))

    def _was_deleted(self, stripe_subscription_id: Optional[str]) -> bool:
        if not stripe_subscription_id:
            return False
        row = self.db.query(BillingEvent.id).filter(
            BillingEvent.stripe_subscription_id == stripe_subscription_id,
            BillingEvent.event_type == SUBSCRIPTION_DELETED_TYPE,
            BillingEvent.outcome == BillingEventOutcome.APPLIED.value,
        ).first()
        return row is not None

    # ------------------------------------------------------------------
    # Lookups (organization rows are locked for the rest of the transaction)
    # ------------------------------------------------------------------

    def _lock_organization(self, organization_id: str) -> Optional[Organization]:
        return self.db.query(Organization).filter(
            Organization.id == organization_id
        ).with_for_update().first()

    def _lock_organization_by_customer(self, customer_id: str) -> Optional[Organization]:
        return self.db.query(Organization).filter(
            Organization.stripe_customer_id == customer_id
        ).with_for_update().first()

    def _resolve_organization(self, event: ProcessorEvent) -> Optional[Organization]:
        """Metadata first, then the bound customer reference."""
        if event.organization_id:
            org = self._lock_organization(event.organization_id)
            if org is not None:
                return org
            logger.warning("Event metadata names an unknown organization", extra={
                "event_id": event.event_id,
                "organization_id": event.organization_id,
            })
        if event.customer_id:
            return self._lock_organization_by_customer(event.customer_id)
        return None

    def _get_subscription(self, organization_id: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.organization_id == organization_id
        ).first()

    def _get_plan(self, slug: str) -> Optional[Plan]:
        return self.db.query(Plan).filter(Plan.slug == slug).first()

    def _bind_customer(self, org: Organization, customer_id: Optional[str]) -> None:
        """Bind a customer reference once; never overwrite an existing binding."""
        if not customer_id or org.stripe_customer_id == customer_id:
            return
        if org.stripe_customer_id:
            logger.warning("Customer reference mismatch, keeping existing binding", extra={
                "organization_id": org.id,
                "event_customer": customer_id,
            })
            return
        owner = self.db.query(Organization.id).filter(
            Organization.stripe_customer_id == customer_id
        ).first()
        if owner is not None:
            logger.error("Customer reference already bound to another organization", extra={
                "organization_id": org.id,
                "owner_organization_id": owner[0],
            })
            return
        org.stripe_customer_id = customer_id
        logger.info("Customer reference bound", extra={"organization_id": org.id})

    def _set_status(self, org: Organization, subscription: Subscription, status: SubscriptionStatus) -> None:
        """Write status and its organization mirror in the same transaction."""
        subscription.status = status
        org.subscription_status = status.value

    def _pilot_state(self, org: Organization) -> PilotState:
        return derive_pilot_state(
            bool(org.is_pilot),
            org.pilot_start_date,
            org.pilot_end_date,
            bool(org.converted_to_paid),
            self._clock(),
            self.catalog.pilot_policy,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_checkout_completed(self, event: ProcessorEvent) -> _Handled:
        org = self._lock_organization(event.organization_id) if event.organization_id else None
        if org is None:
            return _Handled(BillingEventOutcome.FAILED, "Organization not resolvable from checkout metadata")

        self._bind_customer(org, event.customer_id)
        return _Handled(
            BillingEventOutcome.APPLIED,
            "Checkout completed",
            organization_id=org.id,
            amount_cents=event.data.get("amount_total"),
            currency=event.data.get("currency"),
            metadata={"plan_slug": event.metadata.get("plan_slug")},
        )

    def _stale_reason(
        self,
        org: Organization,
        subscription: Optional[Subscription],
        event: ProcessorEvent,
        new_status: SubscriptionStatus,
    ) -> Optional[str]:
        ref = event.subscription_id
        if self._was_deleted(ref):
            return "Subscription reference was already deleted"

        bound_ref = subscription.stripe_subscription_id if subscription else None
        if bound_ref and ref and bound_ref != ref:
            if new_status not in PLAN_BOUND_STATUSES:
                return "Non-entitling update for a superseded subscription reference"
            return None

        if subscription is not None and bound_ref and bound_ref == ref:
            stored_end = as_utc(subscription.current_period_end)
            incoming_end = event.period_end
            if stored_end and incoming_end and incoming_end < stored_end:
                return "Update carries an older billing period"
            last_applied = as_utc(subscription.last_event_at)
            if (
                (stored_end is None or incoming_end is None or incoming_end == stored_end)
                and last_applied is not None
                and event.created is not None
                and event.created < last_applied
            ):
                return "Update is older than the last applied event"

        if (
            not bound_ref
            and new_status not in PLAN_BOUND_STATUSES
            and self._pilot_state(org) is PilotState.PILOT_ACTIVE
        ):
            return "Non-entitling update during an active pilot"

        return None

    def _handle_subscription_changed(self, event: ProcessorEvent) -> _Handled:
        org = self._resolve_organization(event)
        if org is None:
            return _Handled(BillingEventOutcome.FAILED, "Organization not resolvable")

        subscription = self._get_subscription(org.id)
        new_status = map_stripe_status(event.stripe_status)

        stale = self._stale_reason(org, subscription, event, new_status)
        if stale:
            return _Handled(
                BillingEventOutcome.IGNORED,
                stale,
                organization_id=org.id,
                subscription_id=subscription.id if subscription else None,
            )

        price_entry = self.prices.plan_for_price(event.price_id)
        plan = self._get_plan(price_entry.plan_slug) if price_entry else None
        if plan is None:
            if subscription is None or subscription.plan_id is None:
                return _Handled(
                    BillingEventOutcome.FAILED,
                    "Price is not mapped to a plan",
                    organization_id=org.id,
                    metadata={"price_id": event.price_id},
                )
            logger.warning("Unmapped price, keeping current plan", extra={
                "organization_id": org.id,
                "price_id": event.price_id,
            })

        if subscription is None:
            subscription = Subscription(organization_id=org.id)
            self.db.add(subscription)

        previous_plan_id = subscription.plan_id
        if plan is not None:
            subscription.plan_id = plan.id
            subscription.plan = plan
        if price_entry is not None:
            subscription.billing_cycle = BillingCycle(price_entry.billing_cycle)
        subscription.stripe_subscription_id = event.subscription_id
        subscription.stripe_price_id = event.price_id
        if event.period_start is not None:
            subscription.current_period_start = event.period_start
        if event.period_end is not None:
            subscription.current_period_end = event.period_end
        subscription.cancel_at_period_end = event.cancel_at_period_end
        if event.created is not None:
            subscription.last_event_at = event.created

        self._set_status(org, subscription, new_status)
        if new_status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
            subscription.cancelled_at = subscription.cancelled_at or self._clock()
        else:
            subscription.cancelled_at = None

        self._bind_customer(org, event.customer_id)
        if new_status is SubscriptionStatus.ACTIVE and org.is_pilot:
            mark_converted(org, event.customer_id)

        return _Handled(
            BillingEventOutcome.APPLIED,
            f"Subscription {new_status.value}",
            organization_id=org.id,
            subscription_id=subscription.id,
            metadata={
                "status": new_status.value,
                "stripe_status": event.stripe_status,
                "plan_slug": plan.slug if plan else None,
                "plan_changed": plan is not None and previous_plan_id not in (None, plan.id),
            },
        )

    def _handle_subscription_deleted(self, event: ProcessorEvent) -> _Handled:
        org = self._resolve_organization(event)
        if org is None:
            return _Handled(BillingEventOutcome.FAILED, "Organization not resolvable")

        subscription = self._get_subscription(org.id)
        ref = event.subscription_id
        if subscription is not None and subscription.stripe_subscription_id and ref \
                and subscription.stripe_subscription_id != ref:
            return _Handled(
                BillingEventOutcome.IGNORED,
                "Deletion of a superseded subscription reference",
                organization_id=org.id,
                subscription_id=subscription.id,
            )

        starter = self._get_plan(self.catalog.default_plan_slug)
        if starter is None:
            return _Handled(
                BillingEventOutcome.FAILED,
                f"Default plan '{self.catalog.default_plan_slug}' is not seeded",
                organization_id=org.id,
            )

        if subscription is None:
            subscription = Subscription(organization_id=org.id)
            self.db.add(subscription)

        subscription.plan_id = starter.id
        subscription.plan = starter
        subscription.stripe_subscription_id = None
        subscription.stripe_price_id = None
        subscription.cancel_at_period_end = False
        subscription.cancelled_at = event.created or self._clock()
        if event.created is not None:
            subscription.last_event_at = event.created
        self._set_status(org, subscription, SubscriptionStatus.CANCELLED)

        return _Handled(
            BillingEventOutcome.APPLIED,
            "Subscription cancelled, organization moved to the default plan",
            organization_id=org.id,
            subscription_id=subscription.id,
            metadata={"plan_slug": starter.slug},
        )

    def _handle_invoice_paid(self, event: ProcessorEvent) -> _Handled:
        org = self._resolve_organization(event)
        amount = event.data.get("amount_paid")
        logger.info("Invoice paid", extra={
            "organization_id": org.id if org else None,
            "invoice_id": event.data.get("id"),
            "amount": amount / 100 if isinstance(amount, int) else None,
        })
        return _Handled(
            BillingEventOutcome.APPLIED if org else BillingEventOutcome.IGNORED,
            "Invoice paid" if org else "Invoice for an unknown customer",
            organization_id=org.id if org else None,
            amount_cents=amount,
            currency=event.data.get("currency"),
            invoice_id=event.data.get("id"),
        )

    def _handle_invoice_payment_failed(self, event: ProcessorEvent) -> _Handled:
        org = self._resolve_organization(event)
        invoice_id = event.data.get("id")
        details = {
            "amount_cents": event.data.get("amount_due"),
            "currency": event.data.get("currency"),
            "invoice_id": invoice_id,
        }
        if org is None:
            return _Handled(BillingEventOutcome.IGNORED, "Invoice for an unknown customer", **details)

        subscription = self._get_subscription(org.id)
        ref = event.subscription_id
        metadata = {"attempt_count": event.data.get("attempt_count")}

        if subscription is None:
            return _Handled(BillingEventOutcome.IGNORED, "No subscription to mark past due",
                            organization_id=org.id, metadata=metadata, **details)
        if subscription.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
            return _Handled(BillingEventOutcome.IGNORED, "Subscription already ended",
                            organization_id=org.id, subscription_id=subscription.id,
                            metadata=metadata, **details)
        if ref and subscription.stripe_subscription_id and ref != subscription.stripe_subscription_id:
            return _Handled(BillingEventOutcome.IGNORED, "Invoice for a superseded subscription reference",
                            organization_id=org.id, subscription_id=subscription.id,
                            metadata=metadata, **details)

        self._set_status(org, subscription, SubscriptionStatus.PAST_DUE)
        logger.warning("Invoice payment failed, subscription past due", extra={
            "organization_id": org.id,
            "invoice_id": invoice_id,
            "attempt_count": metadata["attempt_count"],
        })
        return _Handled(
            BillingEventOutcome.APPLIED,
            "Subscription past due",
            organization_id=org.id,
            subscription_id=subscription.id,
            metadata=metadata,
            **details,
        )

    def _handle_unknown(self, event: ProcessorEvent) -> _Handled:
        return _Handled(BillingEventOutcome.IGNORED, f"Unhandled event type: {event.event_type}")


def get_billing_synchronizer(db_session: Session) -> BillingEventSynchronizer:
    """Factory function to create a BillingEventSynchronizer."""
    return BillingEventSynchronizer(db_session)
