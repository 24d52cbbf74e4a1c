"""Subscription model — canonical billing state per Stripe subscription."""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_sync.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's Stripe subscription, reconciled from webhook events."""

    __tablename__ = "subscriptions"

    # Owner, set on creation and never reassigned
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    plan_id: Mapped[str] = mapped_column(
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Stripe identifiers; the subscription id is the idempotency key
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    external_subscription_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )

    # Canonical status and cycle (see billing_sync.billing.status)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, server_default="monthly")

    # Billing period (naive UTC)
    current_period_start: Mapped[datetime] = mapped_column(nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"external_subscription_id={self.external_subscription_id}, status={self.status})>"
        )
