"""Tests for Stripe status -> canonical status mapping."""

import pytest

from billing_sync.billing.status import (
    BillingCycle,
    SubscriptionStatus,
    billing_cycle_for_interval,
    map_status,
    parse_billing_cycle,
)


class TestMapStatus:
    """map_status is total and never passes Stripe's vocabulary through."""

    @pytest.mark.parametrize(
        ("stripe_status", "expected"),
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELED),
        ],
    )
    def test_known_statuses(self, stripe_status, expected):
        assert map_status(stripe_status) is expected

    @pytest.mark.parametrize(
        "stripe_status",
        ["incomplete", "incomplete_expired", "unpaid", "paused", "", "ACTIVE", "cancelled"],
    )
    def test_pending_and_unknown_default_to_trialing(self, stripe_status):
        assert map_status(stripe_status) is SubscriptionStatus.TRIALING

    def test_none_defaults_to_trialing(self):
        assert map_status(None) is SubscriptionStatus.TRIALING


class TestBillingCycle:
    def test_parse_metadata_cycle(self):
        assert parse_billing_cycle("monthly") is BillingCycle.MONTHLY
        assert parse_billing_cycle(" Yearly ") is BillingCycle.YEARLY

    def test_parse_unknown_cycle(self):
        assert parse_billing_cycle("weekly") is None
        assert parse_billing_cycle(None) is None

    def test_cycle_from_interval(self):
        assert billing_cycle_for_interval("year") is BillingCycle.YEARLY
        assert billing_cycle_for_interval("month") is BillingCycle.MONTHLY
        assert billing_cycle_for_interval(None) is BillingCycle.MONTHLY
