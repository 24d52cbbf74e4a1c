"""Reconciliation error taxonomy and handler result type.

Only :class:`SignatureError` ever surfaces to the webhook caller as a non-2xx
response. Every other error is carried inside a :class:`HandlerResult`,
logged by the dispatcher, and acknowledged to Stripe so that a bad or
orphaned event does not turn into a retry storm.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from billing_sync.schemas.subscription import SubscriptionSnapshot


class ReconciliationError(Exception):
    """Base class for errors raised or reported by the reconciliation engine."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class SignatureError(ReconciliationError):
    """The payload could not be authenticated as coming from Stripe."""


class MalformedEventError(ReconciliationError):
    """The event is authentic but lacks fields its handler requires."""


class UnresolvableOwnerError(ReconciliationError):
    """The event cannot be attributed to an internal user."""


class RepositoryError(ReconciliationError):
    """The subscription store rejected or failed a read/write."""


class ProviderError(ReconciliationError):
    """A call back to the Stripe API failed."""


class Outcome(str, Enum):
    """How an event was acknowledged."""

    PROCESSED = "processed"
    IGNORED = "ignored"  # no handler registered for the event type
    SKIPPED = "skipped"  # handled, but nothing to write (e.g. stale or no-op)
    FAILED = "failed"


@dataclass
class HandlerResult:
    """Result of handling a single event; never raised, always returned."""

    outcome: Outcome
    event_id: str
    event_type: str
    subscription: SubscriptionSnapshot | None = None
    error: ReconciliationError | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    @classmethod
    def processed(
        cls, event_id: str, event_type: str, subscription: SubscriptionSnapshot | None = None, **detail: Any
    ) -> "HandlerResult":
        return cls(Outcome.PROCESSED, event_id, event_type, subscription=subscription, detail=detail)

    @classmethod
    def ignored(cls, event_id: str, event_type: str) -> "HandlerResult":
        return cls(Outcome.IGNORED, event_id, event_type)

    @classmethod
    def skipped(cls, event_id: str, event_type: str, reason: str, **detail: Any) -> "HandlerResult":
        return cls(Outcome.SKIPPED, event_id, event_type, detail={"reason": reason, **detail})

    @classmethod
    def failed(cls, event_id: str, event_type: str, error: ReconciliationError) -> "HandlerResult":
        return cls(Outcome.FAILED, event_id, event_type, error=error, detail=dict(error.context))
