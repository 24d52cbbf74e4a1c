"""Pydantic v2 models for the Stripe payloads the webhook engine reads.

Only the fields reconciliation needs are declared; everything else Stripe
sends is ignored. Expandable references (``customer``, ``subscription``) are
accepted either as an id string or as an expanded object.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _expandable_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _metadata(value: Any) -> dict[str, str]:
    if not value:
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


ExpandableId = Annotated[str | None, BeforeValidator(_expandable_id)]
Metadata = Annotated[dict[str, str], BeforeValidator(_metadata)]


class StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class StripeRecurring(StripeModel):
    interval: str = "month"
    interval_count: int = 1


class StripePrice(StripeModel):
    id: str
    unit_amount: int | None = None
    currency: str | None = None
    recurring: StripeRecurring | None = None


class StripeSubscriptionItem(StripeModel):
    id: str | None = None
    price: StripePrice | None = None
    # API 2025-08-27 (basil) moved the period from the subscription to the item
    current_period_start: int | None = None
    current_period_end: int | None = None


class StripeItemList(StripeModel):
    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(StripeModel):
    """A ``subscription`` object, from an event or from the API."""

    id: str
    customer: ExpandableId = None
    status: str = ""
    cancel_at_period_end: bool = False
    current_period_start: int | None = None
    current_period_end: int | None = None
    metadata: Metadata = Field(default_factory=dict)
    items: StripeItemList | None = None

    @property
    def first_item(self) -> StripeSubscriptionItem | None:
        if self.items and self.items.data:
            return self.items.data[0]
        return None

    @property
    def price(self) -> StripePrice | None:
        item = self.first_item
        return item.price if item else None

    @property
    def price_id(self) -> str | None:
        price = self.price
        return price.id if price else None

    @property
    def period_anchor(self) -> int | None:
        """Start of the current period, preferring the item-level value."""
        item = self.first_item
        if item and item.current_period_start:
            return item.current_period_start
        return self.current_period_start

    @property
    def recurring(self) -> StripeRecurring | None:
        price = self.price
        return price.recurring if price else None


class StripeCheckoutSession(StripeModel):
    id: str
    mode: str | None = None
    customer: ExpandableId = None
    subscription: ExpandableId = None
    metadata: Metadata = Field(default_factory=dict)


class StripeSubscriptionDetails(StripeModel):
    subscription: ExpandableId = None
    metadata: Metadata = Field(default_factory=dict)


class StripeInvoiceParent(StripeModel):
    subscription_details: StripeSubscriptionDetails | None = None


class StripeInvoice(StripeModel):
    id: str
    customer: ExpandableId = None
    subscription: ExpandableId = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: str | None = None
    subscription_details: StripeSubscriptionDetails | None = None
    # Newer API versions nest the subscription under ``parent``
    parent: StripeInvoiceParent | None = None

    @property
    def details(self) -> StripeSubscriptionDetails | None:
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details
        return self.subscription_details

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        details = self.details
        return details.subscription if details else None

    @property
    def metadata(self) -> dict[str, str]:
        details = self.details
        return details.metadata if details else {}


class StripeEventData(StripeModel):
    object: dict[str, Any]


class StripeEventEnvelope(StripeModel):
    """The verified ``{id, type, created, data: {object}}`` event envelope."""

    id: str
    type: str
    created: int | None = None
    data: StripeEventData
