"""Billing reconciler — the engine's entry point and its wiring."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.billing.dispatcher import EventDispatcher
from billing_sync.billing.errors import HandlerResult
from billing_sync.billing.metrics import LoggingMetricsSink, MetricsSink
from billing_sync.billing.owners import SubscriptionResolver
from billing_sync.billing.plans import PlanResolver
from billing_sync.billing.signature import SignatureVerifier
from billing_sync.billing.stripe_client import StripeGateway
from billing_sync.billing.webhooks import ReconciliationHandlers
from billing_sync.config import Settings
from billing_sync.schemas.stripe import StripeEventEnvelope
from billing_sync.services.plan_catalog import PlanLookup, SqlPlanLookup
from billing_sync.services.subscription_repository import (
    SqlSubscriptionRepository,
    SubscriptionRepository,
)

logger = logging.getLogger(__name__)


class BillingReconciler:
    """Verifies inbound webhooks and reconciles them into subscriptions."""

    def __init__(self, verifier: SignatureVerifier, dispatcher: EventDispatcher) -> None:
        self.verifier = verifier
        self.dispatcher = dispatcher

    def verify(self, payload: bytes, sig_header: str | None) -> StripeEventEnvelope:
        """Authenticate a raw webhook body; raises ``SignatureError``."""
        return self.verifier.verify(payload, sig_header)

    async def handle_event(self, event: StripeEventEnvelope) -> HandlerResult:
        """Reconcile one verified event. Never raises."""
        return await self.dispatcher.dispatch(event)


def build_reconciler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    repository: SubscriptionRepository | None = None,
    plan_lookup: PlanLookup | None = None,
    gateway: StripeGateway | None = None,
    metrics: MetricsSink | None = None,
) -> BillingReconciler:
    """Assemble the engine from settings; any collaborator can be supplied instead."""
    if repository is None or plan_lookup is None:
        if session_factory is None:
            raise ValueError("session_factory is required unless repository and plan_lookup are given")
        repository = repository or SqlSubscriptionRepository(session_factory)
        plan_lookup = plan_lookup or SqlPlanLookup(session_factory)

    handlers = ReconciliationHandlers(
        repository=repository,
        plans=PlanResolver(plan_lookup),
        owners=SubscriptionResolver(repository),
        gateway=gateway or StripeGateway(settings.stripe_secret_key),
        metrics=metrics or LoggingMetricsSink(),
        fallback_period_days=settings.fallback_period_days,
        fallback_period_anchor=settings.fallback_period_anchor,
    )
    verifier = SignatureVerifier(
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance_seconds,
    )
    logger.debug("Billing reconciler assembled (fallback anchor: %s)", settings.fallback_period_anchor)
    return BillingReconciler(verifier, EventDispatcher(handlers))
