"""
Pilot lifecycle state machine.

The pilot state is never stored. It is recomputed from
(is_pilot, pilot_start_date, pilot_end_date, converted_to_paid, now)
on every evaluation, so a change to the lock threshold applies to every
organization at once without a backfill.

    not_a_pilot   is_pilot is false
    pilot_active  today within [start, end], bounds inclusive, missing bound open
    pilot_locked  after end, not converted, and more than lock_after_days since start
    pilot_grace   everything else (ended, not yet locked, or converted)
"""

import logging
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from src.entitlements.catalog import PilotPolicy
from src.entitlements.models import PilotFields

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


class PilotState(str, Enum):
    NOT_A_PILOT = "not_a_pilot"
    PILOT_ACTIVE = "pilot_active"
    PILOT_GRACE = "pilot_grace"
    PILOT_LOCKED = "pilot_locked"


def _to_date(value: DateLike) -> date:
    """Pilot bounds have date-only precision; datetimes are compared by UTC day."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def derive_pilot_state(
    is_pilot: bool,
    pilot_start_date: Optional[date],
    pilot_end_date: Optional[date],
    converted_to_paid: bool,
    now: DateLike,
    policy: Optional[PilotPolicy] = None,
) -> PilotState:
    """
    Derive the pilot state from the organization's pilot columns.

    Args:
        is_pilot: Organization was onboarded as a pilot
        pilot_start_date: First pilot day (inclusive), None = open
        pilot_end_date: Last pilot day (inclusive), None = open
        converted_to_paid: Pilot converted to a paid subscription
        now: Evaluation time
        policy: Pilot constants (defaults to PilotPolicy())

    Returns:
        PilotState
    """
    if not is_pilot:
        return PilotState.NOT_A_PILOT

    policy = policy or PilotPolicy()
    today = _to_date(now)

    after_start = pilot_start_date is None or today >= pilot_start_date
    before_end = pilot_end_date is None or today <= pilot_end_date
    if after_start and before_end:
        return PilotState.PILOT_ACTIVE

    if (
        pilot_end_date is not None
        and today > pilot_end_date
        and not converted_to_paid
        and pilot_start_date is not None
        and (today - pilot_start_date).days > policy.lock_after_days
    ):
        return PilotState.PILOT_LOCKED

    return PilotState.PILOT_GRACE


def pilot_state_for(fields: PilotFields, now: DateLike, policy: Optional[PilotPolicy] = None) -> PilotState:
    return derive_pilot_state(
        fields.is_pilot,
        fields.start_date,
        fields.end_date,
        fields.converted_to_paid,
        now,
        policy,
    )


def pilot_not_started(fields: PilotFields, now: DateLike) -> bool:
    return bool(fields.is_pilot and fields.start_date is not None and _to_date(now) < fields.start_date)


def days_remaining(pilot_end_date: Optional[date], now: DateLike) -> Optional[int]:
    """Whole days until the pilot's last day; 0 once it has passed, None when open-ended."""
    if pilot_end_date is None:
        return None
    return max((pilot_end_date - _to_date(now)).days, 0)


def start_pilot(organization, today: date, policy: Optional[PilotPolicy] = None) -> None:
    """Open a pilot window of policy.trial_days starting today."""
    policy = policy or PilotPolicy()
    organization.is_pilot = True
    organization.pilot_start_date = today
    organization.pilot_end_date = today + timedelta(days=policy.trial_days)
    organization.converted_to_paid = False
    logger.info(
        "Pilot started",
        extra={
            "organization_id": organization.id,
            "pilot_start_date": today.isoformat(),
            "pilot_end_date": organization.pilot_end_date.isoformat(),
        },
    )


def mark_converted(organization, customer_ref: Optional[str] = None) -> bool:
    """
    Flag a pilot organization as converted to paid.

    A conversion requires a bound processor customer. If the organization
    has none yet, customer_ref is bound first; without either the
    conversion is refused.

    Returns:
        True if the organization is converted after the call
    """
    if not organization.is_pilot:
        return False
    if organization.converted_to_paid:
        return True

    if not organization.stripe_customer_id:
        if not customer_ref:
            logger.warning(
                "Pilot conversion refused: no customer reference",
                extra={"organization_id": organization.id},
            )
            return False
        organization.stripe_customer_id = customer_ref

    organization.converted_to_paid = True
    logger.info("Pilot converted to paid", extra={"organization_id": organization.id})
    return True
