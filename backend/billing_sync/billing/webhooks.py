"""Stripe webhook event handlers — reconcile subscription lifecycle events.

Each handler composes the full set of fields it owns and issues exactly one
repository write, so a cancelled request or a concurrent handler never sees a
half-applied row. Expected failures come back as a failed
:class:`HandlerResult`; collaborator errors (store, Stripe API) are converted
to one by :func:`_reconciles`.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from billing_sync.billing.errors import (
    HandlerResult,
    MalformedEventError,
    ReconciliationError,
    UnresolvableOwnerError,
)
from billing_sync.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoiceFailed,
    InvoicePaid,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from billing_sync.billing.metrics import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_CREATED,
    MetricsSink,
    to_major_units,
)
from billing_sync.billing.owners import SubscriptionResolver
from billing_sync.billing.periods import DEFAULT_FALLBACK_DAYS, compute_period
from billing_sync.billing.plans import PlanResolver
from billing_sync.billing.status import (
    BillingCycle,
    SubscriptionStatus,
    billing_cycle_for_interval,
    map_status,
    parse_billing_cycle,
)
from billing_sync.billing.stripe_client import StripeGateway
from billing_sync.schemas.stripe import StripeSubscription
from billing_sync.schemas.subscription import (
    SubscriptionFields,
    SubscriptionSnapshot,
    SubscriptionUpdate,
)
from billing_sync.services.plan_catalog import PlanMatch
from billing_sync.services.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BillingEvent)


def _reconciles(
    handler: Callable[[Any, E], Awaitable[HandlerResult]],
) -> Callable[[Any, E], Awaitable[HandlerResult]]:
    """Turn collaborator errors raised inside ``handler`` into a failed result."""

    @functools.wraps(handler)
    async def wrapper(self: Any, event: E) -> HandlerResult:
        try:
            return await handler(self, event)
        except ReconciliationError as e:
            e.context.setdefault("event_id", event.event_id)
            if event.external_subscription_id:
                e.context.setdefault("external_subscription_id", event.external_subscription_id)
            return HandlerResult.failed(event.event_id, event.event_type, e)

    return wrapper


class ReconciliationHandlers:
    """One handler per Stripe event category."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        plans: PlanResolver,
        owners: SubscriptionResolver,
        gateway: StripeGateway,
        metrics: MetricsSink,
        *,
        fallback_period_days: int = DEFAULT_FALLBACK_DAYS,
        fallback_period_anchor: str = "event",
    ) -> None:
        self._repository = repository
        self._plans = plans
        self._owners = owners
        self._gateway = gateway
        self._metrics = metrics
        self._fallback_period_days = fallback_period_days
        self._fallback_period_anchor = fallback_period_anchor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _period(
        self,
        event: BillingEvent,
        stripe_sub: StripeSubscription,
        cycle: BillingCycle,
    ) -> tuple[datetime, datetime]:
        recurring = stripe_sub.recurring
        if recurring is not None:
            interval, count = recurring.interval, recurring.interval_count
        else:
            interval, count = ("year" if cycle is BillingCycle.YEARLY else "month"), 1

        now = event.created if self._fallback_period_anchor == "event" else None
        return compute_period(
            stripe_sub.period_anchor,
            interval,
            count,
            now=now,
            fallback_days=self._fallback_period_days,
        )

    @staticmethod
    def _billing_cycle(
        metadata_cycle: str | None,
        match: PlanMatch | None,
        stripe_sub: StripeSubscription,
        current: BillingCycle | None = None,
    ) -> BillingCycle:
        cycle = parse_billing_cycle(metadata_cycle)
        if cycle is not None:
            return cycle
        if match is not None:
            return match.billing_cycle
        if current is not None:
            return current
        recurring = stripe_sub.recurring
        return billing_cycle_for_interval(recurring.interval if recurring else None)

    async def _emit(
        self,
        name: str,
        amount_minor: int | None = None,
        currency: str | None = None,
        **metadata: Any,
    ) -> None:
        # Metrics are best-effort and must not fail an otherwise applied event
        try:
            await self._metrics.record(
                name,
                amount=to_major_units(amount_minor, currency),
                currency=currency,
                metadata=metadata,
            )
        except Exception:
            logger.warning("Failed to record business metric %s", name, exc_info=True)

    @staticmethod
    def _is_stale(
        existing: SubscriptionSnapshot,
        status: SubscriptionStatus,
        period_end: datetime,
    ) -> bool:
        """A cancelled row is only reopened by an event for a later period."""
        return (
            existing.status is SubscriptionStatus.CANCELED
            and status is not SubscriptionStatus.CANCELED
            and period_end <= existing.current_period_end
        )

    def _stale(
        self,
        event: BillingEvent,
        status: SubscriptionStatus,
        period_end: datetime,
    ) -> HandlerResult:
        logger.info(
            "Ignoring stale %s for cancelled subscription %s (status %s, period end %s)",
            event.event_type,
            event.external_subscription_id,
            status.value,
            period_end,
        )
        return HandlerResult.skipped(
            event.event_id,
            event.event_type,
            "stale_update",
            external_subscription_id=event.external_subscription_id,
        )

    # ------------------------------------------------------------------
    # checkout.session.completed
    # ------------------------------------------------------------------

    @_reconciles
    async def checkout_completed(self, event: CheckoutCompleted) -> HandlerResult:
        """Establish the subscription bought through a Checkout session."""
        session = event.session
        user_id, plan_id = event.owner_id, event.plan_id

        if not user_id or not plan_id:
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                MalformedEventError(
                    "Checkout session is missing userId/planId metadata",
                    session_id=session.id,
                    user_id=user_id,
                    plan_id=plan_id,
                ),
            )
        if not session.subscription:
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                MalformedEventError(
                    "Checkout session has no subscription",
                    session_id=session.id,
                    mode=session.mode,
                ),
            )
        if not await self._plans.plan_exists(plan_id):
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                MalformedEventError(
                    "Checkout session references an unknown plan",
                    session_id=session.id,
                    plan_id=plan_id,
                ),
            )

        # Fetch full subscription from Stripe to get price and period info
        stripe_sub = await self._gateway.get_subscription(session.subscription)
        match = await self._plans.resolve_plan(stripe_sub.price_id)
        cycle = self._billing_cycle(event.billing_cycle, match, stripe_sub)
        period_start, period_end = self._period(event, stripe_sub, cycle)
        status = map_status(stripe_sub.status)

        existing = await self._repository.find_by_external_id(stripe_sub.id)
        if existing is not None and self._is_stale(existing, status, period_end):
            return self._stale(event, status, period_end)

        snapshot = await self._repository.upsert(
            SubscriptionFields(
                user_id=user_id,
                plan_id=plan_id,
                external_customer_id=session.customer or stripe_sub.customer,
                external_subscription_id=stripe_sub.id,
                status=status,
                billing_cycle=cycle,
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=stripe_sub.cancel_at_period_end,
            )
        )
        if snapshot.user_id != user_id:
            logger.warning(
                "Checkout %s names user %s but subscription %s belongs to %s; owner kept",
                session.id,
                user_id,
                stripe_sub.id,
                snapshot.user_id,
            )

        if existing is None:
            price = stripe_sub.price
            await self._emit(
                SUBSCRIPTION_CREATED,
                price.unit_amount if price else None,
                price.currency if price else None,
                user_id=snapshot.user_id,
                plan_id=snapshot.plan_id,
                billing_cycle=snapshot.billing_cycle.value,
                external_subscription_id=snapshot.external_subscription_id,
                source="checkout",
            )
        logger.info(
            "Checkout completed: subscription %s established for user %s on plan %s",
            snapshot.external_subscription_id,
            snapshot.user_id,
            snapshot.plan_id,
        )
        return HandlerResult.processed(event.event_id, event.event_type, snapshot)

    # ------------------------------------------------------------------
    # customer.subscription.created
    # ------------------------------------------------------------------

    @_reconciles
    async def subscription_created(self, event: SubscriptionCreated) -> HandlerResult:
        """Create the subscription, or refresh it if checkout got there first."""
        stripe_sub = event.subscription
        existing = await self._repository.find_by_external_id(stripe_sub.id)

        user_id = await self._owners.resolve_user(event, existing)
        if user_id is None:
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                UnresolvableOwnerError(
                    "Cannot attribute subscription to a user",
                    event_id=event.event_id,
                    external_subscription_id=stripe_sub.id,
                ),
            )

        match = await self._plans.resolve_plan(stripe_sub.price_id)
        plan_id = None
        if event.plan_id and await self._plans.plan_exists(event.plan_id):
            plan_id = event.plan_id
        elif match is not None:
            plan_id = match.plan_id
        elif existing is not None:
            plan_id = existing.plan_id
        if plan_id is None:
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                MalformedEventError(
                    "Cannot determine plan for new subscription",
                    price_id=stripe_sub.price_id,
                    plan_id=event.plan_id,
                ),
            )

        cycle = self._billing_cycle(
            event.billing_cycle, match, stripe_sub, existing.billing_cycle if existing else None
        )
        period_start, period_end = self._period(event, stripe_sub, cycle)
        status = map_status(stripe_sub.status)

        # A late or retried create must not reopen a cancelled subscription
        if existing is not None and self._is_stale(existing, status, period_end):
            return self._stale(event, status, period_end)

        snapshot = await self._repository.upsert(
            SubscriptionFields(
                user_id=existing.user_id if existing else user_id,
                plan_id=plan_id,
                external_customer_id=stripe_sub.customer
                or (existing.external_customer_id if existing else None),
                external_subscription_id=stripe_sub.id,
                status=status,
                billing_cycle=cycle,
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=stripe_sub.cancel_at_period_end,
            )
        )

        if existing is None:
            price = stripe_sub.price
            await self._emit(
                SUBSCRIPTION_CREATED,
                price.unit_amount if price else None,
                price.currency if price else None,
                user_id=snapshot.user_id,
                plan_id=snapshot.plan_id,
                billing_cycle=snapshot.billing_cycle.value,
                external_subscription_id=snapshot.external_subscription_id,
                source="subscription",
            )
        logger.info(
            "Subscription created: %s (user %s, plan %s, status %s)%s",
            snapshot.external_subscription_id,
            snapshot.user_id,
            snapshot.plan_id,
            snapshot.status.value,
            "" if existing is None else " (already established, refreshed)",
        )
        return HandlerResult.processed(event.event_id, event.event_type, snapshot)

    # ------------------------------------------------------------------
    # customer.subscription.updated
    # ------------------------------------------------------------------

    @_reconciles
    async def subscription_updated(self, event: SubscriptionUpdated) -> HandlerResult:
        """Sync plan, status, period and cancel flag onto the established row."""
        stripe_sub = event.subscription
        existing = await self._repository.find_by_external_id(stripe_sub.id)

        # Metadata is not guaranteed on update events; fall back to the stored row
        user_id = await self._owners.resolve_user(event, existing)
        if user_id is None:
            return HandlerResult.failed(
                event.event_id,
                event.event_type,
                UnresolvableOwnerError(
                    "Cannot attribute subscription to a user",
                    event_id=event.event_id,
                    external_subscription_id=stripe_sub.id,
                ),
            )
        if existing is None:
            logger.warning(
                "Update for subscription %s (user %s) before it was established; skipping",
                stripe_sub.id,
                user_id,
            )
            return HandlerResult.skipped(event.event_id, event.event_type, "not_established")
        if user_id != existing.user_id:
            logger.warning(
                "Subscription %s metadata names user %s but row belongs to %s; owner kept",
                stripe_sub.id,
                user_id,
                existing.user_id,
            )

        plan_id = existing.plan_id
        match = await self._plans.resolve_plan(stripe_sub.price_id)
        if match is not None and match.plan_id != existing.plan_id:
            logger.info(
                "Plan change on %s: %s -> %s",
                stripe_sub.id,
                existing.plan_id,
                match.plan_id,
            )
            plan_id = match.plan_id

        cycle = self._billing_cycle(event.billing_cycle, match, stripe_sub, existing.billing_cycle)
        period_start, period_end = self._period(event, stripe_sub, cycle)
        status = map_status(stripe_sub.status)

        # A late update must not bring a cancelled subscription back to life
        if self._is_stale(existing, status, period_end):
            return self._stale(event, status, period_end)

        snapshot = await self._repository.update_by_external_id(
            stripe_sub.id,
            SubscriptionUpdate(
                plan_id=plan_id,
                external_customer_id=stripe_sub.customer or existing.external_customer_id,
                status=status,
                billing_cycle=cycle,
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=stripe_sub.cancel_at_period_end,
            ),
        )
        if snapshot is None:
            return HandlerResult.skipped(event.event_id, event.event_type, "not_established")

        logger.info(
            "Subscription updated: %s → plan=%s, status=%s, cancel_at_period_end=%s",
            stripe_sub.id,
            snapshot.plan_id,
            snapshot.status.value,
            snapshot.cancel_at_period_end,
        )
        return HandlerResult.processed(event.event_id, event.event_type, snapshot)

    # ------------------------------------------------------------------
    # customer.subscription.deleted
    # ------------------------------------------------------------------

    @_reconciles
    async def subscription_deleted(self, event: SubscriptionDeleted) -> HandlerResult:
        """Mark the subscription cancelled; the row is kept for history."""
        stripe_sub = event.subscription
        snapshot = await self._repository.update_by_external_id(
            stripe_sub.id,
            SubscriptionUpdate(
                status=SubscriptionStatus.CANCELED,
                cancel_at_period_end=True,
            ),
        )
        if snapshot is None:
            logger.warning(
                "No local subscription found for Stripe subscription %s (delete event)",
                stripe_sub.id,
            )
            return HandlerResult.skipped(event.event_id, event.event_type, "not_established")

        await self._emit(
            SUBSCRIPTION_CANCELLED,
            user_id=snapshot.user_id,
            plan_id=snapshot.plan_id,
            external_subscription_id=snapshot.external_subscription_id,
        )
        logger.info("Subscription deleted: %s marked as canceled", stripe_sub.id)
        return HandlerResult.processed(event.event_id, event.event_type, snapshot)

    # ------------------------------------------------------------------
    # invoice.paid / invoice.payment_failed
    # ------------------------------------------------------------------

    @_reconciles
    async def invoice_paid(self, event: InvoicePaid) -> HandlerResult:
        """Record a successful payment; the subscription row is not touched."""
        invoice = event.invoice
        await self._emit(
            PAYMENT_SUCCEEDED,
            invoice.amount_paid,
            invoice.currency,
            invoice_id=invoice.id,
            user_id=event.owner_id,
            external_customer_id=invoice.customer,
            external_subscription_id=invoice.subscription_id,
        )
        logger.info(
            "Invoice paid: %s (subscription %s, %s %s)",
            invoice.id,
            invoice.subscription_id,
            invoice.amount_paid,
            invoice.currency,
        )
        return HandlerResult.processed(event.event_id, event.event_type)

    @_reconciles
    async def invoice_failed(self, event: InvoiceFailed) -> HandlerResult:
        """Record a failed payment; status changes arrive via subscription.updated."""
        invoice = event.invoice
        await self._emit(
            PAYMENT_FAILED,
            invoice.amount_due,
            invoice.currency,
            invoice_id=invoice.id,
            user_id=event.owner_id,
            external_customer_id=invoice.customer,
            external_subscription_id=invoice.subscription_id,
        )
        logger.info(
            "Payment failed: invoice %s (subscription %s, %s %s due)",
            invoice.id,
            invoice.subscription_id,
            invoice.amount_due,
            invoice.currency,
        )
        return HandlerResult.processed(event.event_id, event.event_type)
