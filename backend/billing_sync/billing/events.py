"""Typed event variants — one per Stripe event category the engine handles."""

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from billing_sync.billing.errors import MalformedEventError
from billing_sync.billing.periods import ts_to_naive
from billing_sync.schemas.stripe import (
    StripeCheckoutSession,
    StripeEventEnvelope,
    StripeInvoice,
    StripeSubscription,
)

# Metadata keys written at checkout time; snake_case accepted for older sessions
OWNER_KEYS = ("userId", "user_id")
PLAN_KEYS = ("planId", "plan_id")
BILLING_CYCLE_KEYS = ("billingCycle", "billing_cycle")


def metadata_value(metadata: dict[str, str], keys: tuple[str, ...]) -> str | None:
    """Return the first non-blank metadata value among ``keys``."""
    for key in keys:
        value = (metadata.get(key) or "").strip()
        if value:
            return value
    return None


class BillingEvent(BaseModel):
    """Fields shared by every variant."""

    model_config = ConfigDict(frozen=True)

    payload_field: ClassVar[str]

    event_id: str
    event_type: str
    created: datetime | None = None

    @property
    def owner_id(self) -> str | None:
        return None

    @property
    def external_subscription_id(self) -> str | None:
        return None


class CheckoutCompleted(BillingEvent):
    payload_field: ClassVar[str] = "session"
    session: StripeCheckoutSession

    @property
    def external_subscription_id(self) -> str | None:
        return self.session.subscription

    @property
    def owner_id(self) -> str | None:
        return metadata_value(self.session.metadata, OWNER_KEYS)

    @property
    def plan_id(self) -> str | None:
        return metadata_value(self.session.metadata, PLAN_KEYS)

    @property
    def billing_cycle(self) -> str | None:
        return metadata_value(self.session.metadata, BILLING_CYCLE_KEYS)


class _SubscriptionEvent(BillingEvent):
    payload_field: ClassVar[str] = "subscription"
    subscription: StripeSubscription

    @property
    def external_subscription_id(self) -> str | None:
        return self.subscription.id

    @property
    def owner_id(self) -> str | None:
        return metadata_value(self.subscription.metadata, OWNER_KEYS)

    @property
    def plan_id(self) -> str | None:
        return metadata_value(self.subscription.metadata, PLAN_KEYS)

    @property
    def billing_cycle(self) -> str | None:
        return metadata_value(self.subscription.metadata, BILLING_CYCLE_KEYS)


class SubscriptionCreated(_SubscriptionEvent):
    pass


class SubscriptionUpdated(_SubscriptionEvent):
    pass


class SubscriptionDeleted(_SubscriptionEvent):
    pass


class _InvoiceEvent(BillingEvent):
    payload_field: ClassVar[str] = "invoice"
    invoice: StripeInvoice

    @property
    def external_subscription_id(self) -> str | None:
        return self.invoice.subscription_id

    @property
    def owner_id(self) -> str | None:
        return metadata_value(self.invoice.metadata, OWNER_KEYS)


class InvoicePaid(_InvoiceEvent):
    pass


class InvoiceFailed(_InvoiceEvent):
    pass


# Stripe event type tag -> variant
EVENT_TYPES: dict[str, type[BillingEvent]] = {
    "checkout.session.completed": CheckoutCompleted,
    "customer.subscription.created": SubscriptionCreated,
    "customer.subscription.updated": SubscriptionUpdated,
    "customer.subscription.deleted": SubscriptionDeleted,
    # Stripe also sends invoice.payment_succeeded for the same payment; only
    # invoice.paid is routed so each payment is recorded once
    "invoice.paid": InvoicePaid,
    "invoice.payment_failed": InvoiceFailed,
}


def parse_event(envelope: StripeEventEnvelope) -> BillingEvent | None:
    """Build the typed variant for ``envelope``; None for unknown event types.

    Raises :class:`MalformedEventError` if the payload does not have the
    shape its event type requires.
    """
    variant = EVENT_TYPES.get(envelope.type)
    if variant is None:
        return None

    try:
        return variant.model_validate(
            {
                "event_id": envelope.id,
                "event_type": envelope.type,
                "created": ts_to_naive(envelope.created) if envelope.created else None,
                variant.payload_field: envelope.data.object,
            }
        )
    except ValidationError as e:
        raise MalformedEventError(
            f"Malformed {envelope.type} payload",
            event_id=envelope.id,
            errors=e.errors(include_url=False),
        ) from e
