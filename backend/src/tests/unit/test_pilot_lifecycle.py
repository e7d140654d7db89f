"""
Unit tests for the pilot lifecycle state machine.

Tests cover:
- State derivation at every boundary (inclusive bounds, lock threshold)
- Converted pilots never lock
- Days remaining
- Starting and converting a pilot
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.entitlements.catalog import PilotPolicy
from src.entitlements.lifecycle import (
    PilotState,
    days_remaining,
    derive_pilot_state,
    mark_converted,
    start_pilot,
)
from src.models.organization import Organization

START = date(2026, 1, 1)
END = date(2026, 1, 16)
POLICY = PilotPolicy()


def state_on(today, converted=False, start=START, end=END, is_pilot=True):
    return derive_pilot_state(is_pilot, start, end, converted, today, POLICY)


class TestDerivePilotState:
    """Tests for derive_pilot_state."""

    def test_not_a_pilot(self):
        assert state_on(date(2026, 1, 5), is_pilot=False) is PilotState.NOT_A_PILOT

    @pytest.mark.parametrize("today", [START, date(2026, 1, 8), END])
    def test_active_within_inclusive_bounds(self, today):
        assert state_on(today) is PilotState.PILOT_ACTIVE

    def test_day_after_end_is_grace(self):
        assert state_on(END + timedelta(days=1)) is PilotState.PILOT_GRACE

    def test_exactly_lock_threshold_is_still_grace(self):
        """Thirty days after start is not yet 'more than' thirty."""
        today = START + timedelta(days=POLICY.lock_after_days)
        assert state_on(today) is PilotState.PILOT_GRACE

    def test_locked_after_threshold(self):
        today = START + timedelta(days=POLICY.lock_after_days + 1)
        assert state_on(today) is PilotState.PILOT_LOCKED

    def test_converted_pilot_never_locks(self):
        today = START + timedelta(days=365)
        assert state_on(today, converted=True) is PilotState.PILOT_GRACE

    def test_before_start_is_grace(self):
        assert state_on(START - timedelta(days=1)) is PilotState.PILOT_GRACE

    def test_missing_end_is_open(self):
        assert state_on(date(2027, 6, 1), end=None) is PilotState.PILOT_ACTIVE

    def test_missing_start_is_open_but_never_locks(self):
        assert state_on(date(2025, 1, 1), start=None) is PilotState.PILOT_ACTIVE
        assert state_on(date(2026, 6, 1), start=None) is PilotState.PILOT_GRACE

    def test_datetime_is_compared_by_utc_day(self):
        """01:00 at UTC+5 on the 17th is still the 16th in UTC."""
        now = datetime(2026, 1, 17, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        assert state_on(now) is PilotState.PILOT_ACTIVE

    def test_lock_threshold_follows_policy(self):
        strict = PilotPolicy(lock_after_days=20)
        today = START + timedelta(days=21)
        assert derive_pilot_state(True, START, END, False, today, strict) is PilotState.PILOT_LOCKED


class TestDaysRemaining:
    """Tests for days_remaining."""

    def test_counts_whole_days(self):
        assert days_remaining(END, date(2026, 1, 10)) == 6

    def test_last_day_is_zero(self):
        assert days_remaining(END, END) == 0

    def test_never_negative(self):
        assert days_remaining(END, date(2026, 3, 1)) == 0

    def test_open_ended(self):
        assert days_remaining(None, date(2026, 3, 1)) is None


class TestStartAndConvert:
    """Tests for start_pilot and mark_converted."""

    def test_start_pilot_opens_trial_window(self):
        org = Organization(id="org-1", name="Acme")
        start_pilot(org, START, POLICY)

        assert org.is_pilot is True
        assert org.pilot_start_date == START
        assert org.pilot_end_date == START + timedelta(days=POLICY.trial_days)
        assert org.converted_to_paid is False

    def test_convert_requires_customer_reference(self):
        org = Organization(id="org-1", name="Acme", is_pilot=True, converted_to_paid=False)

        assert mark_converted(org) is False
        assert org.converted_to_paid is False

    def test_convert_binds_customer_when_missing(self):
        org = Organization(id="org-1", name="Acme", is_pilot=True, converted_to_paid=False)

        assert mark_converted(org, "cus_123") is True
        assert org.stripe_customer_id == "cus_123"
        assert org.converted_to_paid is True

    def test_convert_keeps_existing_customer(self):
        org = Organization(
            id="org-1", name="Acme", is_pilot=True,
            converted_to_paid=False, stripe_customer_id="cus_existing",
        )

        assert mark_converted(org, "cus_other") is True
        assert org.stripe_customer_id == "cus_existing"

    def test_non_pilot_is_not_converted(self):
        org = Organization(id="org-1", name="Acme", is_pilot=False, converted_to_paid=False)

        assert mark_converted(org, "cus_123") is False
        assert org.converted_to_paid is False
