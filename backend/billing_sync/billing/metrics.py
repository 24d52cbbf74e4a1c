"""Business metrics emitted by the webhook engine."""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"
SUBSCRIPTION_CREATED = "subscription_created"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"

# Stripe amounts are in the currency's smallest unit; these have no minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)


def to_major_units(amount: int | None, currency: str | None) -> Decimal | None:
    """Convert a Stripe minor-unit amount (e.g. 2900 usd) to major units (29.00)."""
    if amount is None:
        return None
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class MetricsSink(ABC):
    """Receives named business events."""

    @abstractmethod
    async def record(
        self,
        name: str,
        amount: Decimal | None = None,
        currency: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record one business event."""


class LoggingMetricsSink(MetricsSink):
    """Writes business events to the ``billing_sync.metrics`` logger."""

    def __init__(self, metrics_logger: logging.Logger | None = None) -> None:
        self._logger = metrics_logger or logging.getLogger("billing_sync.metrics")

    async def record(
        self,
        name: str,
        amount: Decimal | None = None,
        currency: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._logger.info(
            "Business metric: %s amount=%s currency=%s metadata=%s",
            name,
            amount,
            currency.upper() if currency else None,
            metadata or {},
        )
