"""Canonical subscription status and billing cycle vocabularies."""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Closed internal status enum — never a raw Stripe status."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


_STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}


def map_status(stripe_status: str | None) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the canonical enum.

    Total: ``incomplete``, ``incomplete_expired``, ``unpaid`` and any value
    Stripe adds later fall back to ``trialing``, which neither grants full
    access nor locks out a user who is mid-setup.
    """
    return _STRIPE_STATUS_MAP.get(stripe_status or "", SubscriptionStatus.TRIALING)


def parse_billing_cycle(value: str | None) -> BillingCycle | None:
    """Parse a metadata billing cycle (``monthly``/``yearly``); None if absent or unknown."""
    if not value:
        return None
    try:
        return BillingCycle(value.strip().lower())
    except ValueError:
        return None


def billing_cycle_for_interval(interval: str | None) -> BillingCycle:
    """Derive the billing cycle from a recurring price interval."""
    return BillingCycle.YEARLY if interval == "year" else BillingCycle.MONTHLY
