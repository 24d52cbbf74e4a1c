"""Ownership resolution — which internal user a Stripe event belongs to."""

import logging

from billing_sync.billing.events import BillingEvent
from billing_sync.schemas.subscription import SubscriptionSnapshot
from billing_sync.services.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)


class SubscriptionResolver:
    """Resolves the owning user from event metadata, then from the stored row."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    async def resolve_user(
        self,
        event: BillingEvent,
        existing: SubscriptionSnapshot | None = None,
    ) -> str | None:
        """Return the owning user id, or None if the event is unresolvable.

        1. ``userId`` metadata set when the subscription was created.
        2. The ``user_id`` of the row stored for the event's subscription id
           (``existing`` if the caller already loaded it).
        """
        owner_id = event.owner_id
        if owner_id:
            return owner_id

        external_id = event.external_subscription_id
        if not external_id:
            return None

        if existing is None:
            existing = await self._repository.find_by_external_id(external_id)
        if existing is None:
            logger.info(
                "No owner metadata and no stored subscription for %s (event %s)",
                external_id,
                event.event_id,
            )
            return None

        logger.debug("Resolved owner of %s by reverse lookup: %s", external_id, existing.user_id)
        return existing.user_id
