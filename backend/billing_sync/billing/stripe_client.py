"""Async Stripe API wrapper used by the reconciliation handlers."""

import logging

import stripe
from stripe import StripeClient

from billing_sync.billing.errors import ProviderError
from billing_sync.schemas.stripe import StripeSubscription

logger = logging.getLogger(__name__)


class StripeGateway:
    """Reads subscription detail back from Stripe.

    Calls are made once, without internal retries: Stripe already redelivers
    webhooks whose processing failed.
    """

    def __init__(self, secret_key: str, client: StripeClient | None = None) -> None:
        self._secret_key = secret_key
        self._client = client

    @property
    def client(self) -> StripeClient:
        if self._client is None:
            self._client = StripeClient(
                self._secret_key,
                http_client=stripe.HTTPXClient(),
            )
        return self._client

    async def get_subscription(self, subscription_id: str) -> StripeSubscription:
        """Retrieve a Stripe subscription by ID."""
        try:
            stripe_sub = await self.client.v1.subscriptions.retrieve_async(subscription_id)
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving subscription %s: %s", subscription_id, e)
            raise ProviderError(
                "Failed to retrieve subscription from Stripe",
                external_subscription_id=subscription_id,
                stripe_error=str(e),
            ) from e
        return StripeSubscription.model_validate(stripe_sub.to_dict())
