"""Plan model — the internal plan catalog referenced by subscriptions."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from billing_sync.database import Base, TimestampMixin


class Plan(TimestampMixin, Base):
    """A purchasable plan and the Stripe prices that bill it."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Stripe price references; one plan may be billed monthly or yearly
    stripe_price_id_monthly: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    stripe_price_id_yearly: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name={self.name!r})>"
