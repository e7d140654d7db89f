"""
Typed view of Stripe webhook events.

Stripe event types are mapped onto a closed BillingEventKind enum with an
explicit UNKNOWN member, so new event types are acknowledged and ignored
instead of reaching a handler by accident.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from src.models.subscription import SubscriptionStatus

logger = logging.getLogger(__name__)


class BillingEventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_stripe_type(cls, event_type: Optional[str]) -> "BillingEventKind":
        return _KIND_BY_STRIPE_TYPE.get(event_type or "", cls.UNKNOWN)


_KIND_BY_STRIPE_TYPE = {
    "checkout.session.completed": BillingEventKind.CHECKOUT_COMPLETED,
    "customer.subscription.created": BillingEventKind.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": BillingEventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": BillingEventKind.SUBSCRIPTION_DELETED,
    "invoice.paid": BillingEventKind.INVOICE_PAID,
    "invoice.payment_succeeded": BillingEventKind.INVOICE_PAID,
    "invoice.payment_failed": BillingEventKind.INVOICE_PAYMENT_FAILED,
}


# Stripe subscription status -> internal status; anything unlisted is active
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.CANCELLED,
    "trialing": SubscriptionStatus.TRIALING,
    "incomplete": SubscriptionStatus.TRIALING,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
}


def map_stripe_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get((stripe_status or "").lower(), SubscriptionStatus.ACTIVE)


def from_unix(value: Any) -> Optional[datetime]:
    """Stripe unix seconds -> aware UTC datetime; None for missing or malformed values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Ignoring malformed Stripe timestamp", extra={"value": repr(value)})
        return None


def _ref(value: Any) -> Optional[str]:
    """Stripe references arrive either as an id string or as an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


@dataclass(frozen=True)
class ProcessorEvent:
    """A verified Stripe event reduced to the fields billing uses."""

    event_id: str
    event_type: str
    kind: BillingEventKind
    created: Optional[datetime]
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProcessorEvent":
        """
        Build from a decoded webhook body.

        Raises:
            ValueError: If the event id or data object is missing
        """
        event_id = payload.get("id")
        if not event_id:
            raise ValueError("Stripe event has no id")
        data_object = (payload.get("data") or {}).get("object")
        if not isinstance(data_object, dict):
            raise ValueError("Stripe event has no data object")
        event_type = payload.get("type") or ""
        return cls(
            event_id=event_id,
            event_type=event_type,
            kind=BillingEventKind.from_stripe_type(event_type),
            created=from_unix(payload.get("created")),
            data=data_object,
        )

    # ------------------------------------------------------------------
    # Accessors over the data object
    # ------------------------------------------------------------------

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.data.get("metadata") or {}

    @property
    def organization_id(self) -> Optional[str]:
        return self.metadata.get("organization_id") or None

    @property
    def customer_id(self) -> Optional[str]:
        return _ref(self.data.get("customer"))

    @property
    def subscription_id(self) -> Optional[str]:
        """Subscription reference: the object itself for subscription events, a field otherwise."""
        if self.kind in (
            BillingEventKind.SUBSCRIPTION_CREATED,
            BillingEventKind.SUBSCRIPTION_UPDATED,
            BillingEventKind.SUBSCRIPTION_DELETED,
        ):
            return self.data.get("id")
        return _ref(self.data.get("subscription"))

    @property
    def first_item(self) -> Dict[str, Any]:
        items = (self.data.get("items") or {}).get("data") or []
        return items[0] if items else {}

    @property
    def price_id(self) -> Optional[str]:
        item = self.first_item
        return _ref(item.get("price")) or _ref(item.get("plan"))

    @property
    def period_start(self) -> Optional[datetime]:
        value = self.data.get("current_period_start")
        if value is None:
            value = self.first_item.get("current_period_start")
        return from_unix(value)

    @property
    def period_end(self) -> Optional[datetime]:
        value = self.data.get("current_period_end")
        if value is None:
            value = self.first_item.get("current_period_end")
        return from_unix(value)

    @property
    def stripe_status(self) -> Optional[str]:
        return self.data.get("status")

    @property
    def cancel_at_period_end(self) -> bool:
        return bool(self.data.get("cancel_at_period_end"))
