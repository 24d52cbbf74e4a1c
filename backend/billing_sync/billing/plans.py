"""Plan resolution for subscription events."""

import logging

from billing_sync.services.plan_catalog import PlanLookup, PlanMatch

logger = logging.getLogger(__name__)


class PlanResolver:
    """Maps Stripe price ids onto catalog plans.

    An unknown price is "no change", never an error: the caller keeps the
    plan it already has rather than nulling it out or making Stripe retry.
    """

    def __init__(self, lookup: PlanLookup) -> None:
        self._lookup = lookup

    async def resolve_plan(self, price_id: str | None) -> PlanMatch | None:
        """Reverse lookup: Stripe price ID -> plan. Returns None if not found."""
        if not price_id:
            return None
        match = await self._lookup.find_plan_by_price_id(price_id)
        if match is None:
            logger.warning("Unknown Stripe price ID %s — no matching plan", price_id)
        return match

    async def plan_exists(self, plan_id: str) -> bool:
        return await self._lookup.plan_exists(plan_id)
