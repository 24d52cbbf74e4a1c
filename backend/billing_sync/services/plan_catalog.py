"""Plan catalog lookups — Stripe price id -> internal plan."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.billing.errors import RepositoryError
from billing_sync.billing.status import BillingCycle
from billing_sync.models.plan import Plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanMatch:
    """A plan found by price id, and which of its prices matched."""

    plan_id: str
    billing_cycle: BillingCycle


class PlanLookup(ABC):
    """Read access to the plan catalog."""

    @abstractmethod
    async def find_plan_by_price_id(self, price_id: str) -> PlanMatch | None:
        """Return the plan billed by ``price_id`` (monthly or yearly), or None."""

    @abstractmethod
    async def plan_exists(self, plan_id: str) -> bool:
        """Whether ``plan_id`` is a row in the catalog."""


class SqlPlanLookup(PlanLookup):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_plan_by_price_id(self, price_id: str) -> PlanMatch | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Plan).where(
                        or_(
                            Plan.stripe_price_id_monthly == price_id,
                            Plan.stripe_price_id_yearly == price_id,
                        )
                    )
                )
                plan = result.scalars().first()
        except SQLAlchemyError as e:
            raise RepositoryError("Plan lookup failed", price_id=price_id) from e

        if plan is None:
            return None
        cycle = BillingCycle.YEARLY if plan.stripe_price_id_yearly == price_id else BillingCycle.MONTHLY
        return PlanMatch(plan_id=plan.id, billing_cycle=cycle)

    async def plan_exists(self, plan_id: str) -> bool:
        try:
            async with self._session_factory() as db:
                return await db.get(Plan, plan_id) is not None
        except SQLAlchemyError as e:
            raise RepositoryError("Plan lookup failed", plan_id=plan_id) from e
