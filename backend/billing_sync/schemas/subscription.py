"""Canonical subscription read model returned by the repository and engine."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, model_validator

from billing_sync.billing.status import BillingCycle, SubscriptionStatus


class SubscriptionSnapshot(BaseModel):
    """Immutable view of a reconciled subscription row."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    user_id: str
    plan_id: str
    external_customer_id: str | None
    external_subscription_id: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool


class SubscriptionFields(BaseModel):
    """A fully composed subscription row, written in a single statement."""

    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    plan_id: str
    external_customer_id: str | None = None
    external_subscription_id: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False

    @model_validator(mode="after")
    def _check_period(self) -> "SubscriptionFields":
        if self.current_period_start >= self.current_period_end:
            raise ValueError("current_period_start must be before current_period_end")
        return self


class SubscriptionUpdate(BaseModel):
    """Mutable fields of an established subscription; unset fields are left alone."""

    model_config = ConfigDict(use_enum_values=True)

    plan_id: str | None = None
    external_customer_id: str | None = None
    status: SubscriptionStatus | None = None
    billing_cycle: BillingCycle | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool | None = None

    @model_validator(mode="after")
    def _check_period(self) -> "SubscriptionUpdate":
        start, end = self.current_period_start, self.current_period_end
        if (start is None) != (end is None):
            raise ValueError("current_period_start and current_period_end are updated together")
        if start is not None and start >= end:
            raise ValueError("current_period_start must be before current_period_end")
        return self

    def values(self) -> dict:
        return self.model_dump(exclude_none=True)
