"""Routes verified Stripe events to their reconciliation handler."""

import logging
from collections.abc import Awaitable, Callable

from billing_sync.billing.errors import (
    HandlerResult,
    MalformedEventError,
    Outcome,
    ReconciliationError,
    RepositoryError,
)
from billing_sync.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoiceFailed,
    InvoicePaid,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    parse_event,
)
from billing_sync.billing.webhooks import ReconciliationHandlers
from billing_sync.schemas.stripe import StripeEventEnvelope

logger = logging.getLogger(__name__)

Handler = Callable[[BillingEvent], Awaitable[HandlerResult]]


class EventDispatcher:
    """Maps event variants to handlers; never raises.

    Event types without a handler are acknowledged as ``ignored`` so that new
    Stripe event types never make the endpoint fail closed.
    """

    def __init__(self, handlers: ReconciliationHandlers) -> None:
        self._routes: dict[type[BillingEvent], Handler] = {
            CheckoutCompleted: handlers.checkout_completed,
            SubscriptionCreated: handlers.subscription_created,
            SubscriptionUpdated: handlers.subscription_updated,
            SubscriptionDeleted: handlers.subscription_deleted,
            InvoicePaid: handlers.invoice_paid,
            InvoiceFailed: handlers.invoice_failed,
        }

    def register(self, variant: type[BillingEvent], handler: Handler) -> None:
        self._routes[variant] = handler

    async def dispatch(self, envelope: StripeEventEnvelope) -> HandlerResult:
        """Handle one verified event and return how it was acknowledged."""
        try:
            event = parse_event(envelope)
        except MalformedEventError as e:
            result = HandlerResult.failed(envelope.id, envelope.type, e)
        else:
            handler = self._routes.get(type(event)) if event is not None else None
            if handler is None:
                result = HandlerResult.ignored(envelope.id, envelope.type)
            else:
                logger.info("Processing webhook event: %s (id=%s)", envelope.type, envelope.id)
                try:
                    result = await handler(event)
                except Exception as e:
                    logger.exception("Unexpected error processing webhook event %s", envelope.id)
                    result = HandlerResult.failed(
                        envelope.id,
                        envelope.type,
                        ReconciliationError(
                            "Unexpected error",
                            event_id=envelope.id,
                            external_subscription_id=event.external_subscription_id,
                            error=repr(e),
                        ),
                    )

        self._log(result)
        return result

    @staticmethod
    def _log(result: HandlerResult) -> None:
        if result.outcome is Outcome.IGNORED:
            logger.debug("Unhandled webhook event type: %s (id=%s)", result.event_type, result.event_id)
        elif result.outcome is Outcome.SKIPPED:
            logger.info(
                "Webhook event %s (%s) skipped: %s",
                result.event_id,
                result.event_type,
                result.detail,
            )
        elif result.outcome is Outcome.FAILED:
            error = result.error
            # Store failures are acknowledged too; an out-of-band sweep repairs drift
            log = logger.error if isinstance(error, RepositoryError) else logger.warning
            log(
                "Webhook event %s (%s) not applied: %s [%s] %s",
                result.event_id,
                result.event_type,
                error.message if error else "unknown error",
                type(error).__name__,
                result.detail,
            )
