"""Subscription repository — the single serialization point for webhook writes.

Every write is one statement keyed on ``external_subscription_id``: an
``INSERT ... ON CONFLICT DO UPDATE`` for upserts and an ``UPDATE ...
RETURNING`` for updates. Concurrent handlers for the same subscription
therefore converge on whichever write lands last instead of interleaving
field-by-field.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_sync.billing.errors import RepositoryError
from billing_sync.models.subscription import Subscription
from billing_sync.schemas.subscription import (
    SubscriptionFields,
    SubscriptionSnapshot,
    SubscriptionUpdate,
)

logger = logging.getLogger(__name__)

# Columns an upsert must never overwrite on an existing row
_IMMUTABLE_COLUMNS = frozenset({"id", "user_id", "external_subscription_id", "created_at"})


class SubscriptionRepository(ABC):
    """Storage for canonical subscriptions, keyed by Stripe subscription id."""

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> SubscriptionSnapshot | None:
        """Return the subscription for ``external_id``, or None."""

    @abstractmethod
    async def create(self, fields: SubscriptionFields) -> SubscriptionSnapshot:
        """Insert a new subscription; fails if ``external_id`` already exists."""

    @abstractmethod
    async def upsert(self, fields: SubscriptionFields) -> SubscriptionSnapshot:
        """Insert, or refresh every mutable column of the existing row."""

    @abstractmethod
    async def update_by_external_id(
        self, external_id: str, changes: SubscriptionUpdate
    ) -> SubscriptionSnapshot | None:
        """Apply ``changes`` to the existing row; None if there is no row."""


def _dialect_insert(db: AsyncSession):
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RepositoryError(f"Upsert is not supported on dialect {dialect!r}", dialect=dialect)


class SqlSubscriptionRepository(SubscriptionRepository):
    """SQLAlchemy implementation; opens one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str, **context: Any) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("Subscription %s failed (%s): %s", operation, context, e)
                raise RepositoryError(
                    f"Subscription {operation} failed",
                    operation=operation,
                    **context,
                ) from e

    async def find_by_external_id(self, external_id: str) -> SubscriptionSnapshot | None:
        async with self._transaction("lookup", external_subscription_id=external_id) as db:
            result = await db.execute(
                select(Subscription).where(Subscription.external_subscription_id == external_id)
            )
            subscription = result.scalar_one_or_none()
            if subscription is None:
                return None
            return SubscriptionSnapshot.model_validate(subscription)

    async def create(self, fields: SubscriptionFields) -> SubscriptionSnapshot:
        values = fields.model_dump()
        async with self._transaction(
            "create",
            external_subscription_id=fields.external_subscription_id,
            fields=values,
        ) as db:
            subscription = Subscription(**values)
            db.add(subscription)
            await db.flush()
            await db.refresh(subscription)
            logger.info(
                "Created subscription %s for user %s (stripe %s)",
                subscription.id,
                subscription.user_id,
                subscription.external_subscription_id,
            )
            return SubscriptionSnapshot.model_validate(subscription)

    async def upsert(self, fields: SubscriptionFields) -> SubscriptionSnapshot:
        values = fields.model_dump()
        async with self._transaction(
            "upsert",
            external_subscription_id=fields.external_subscription_id,
            fields=values,
        ) as db:
            insert = _dialect_insert(db)
            stmt = insert(Subscription).values(**values)
            refreshed = {
                name: stmt.excluded[name]
                for name in values
                if name not in _IMMUTABLE_COLUMNS
            }
            refreshed["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(
                index_elements=["external_subscription_id"],
                set_=refreshed,
            ).returning(Subscription)

            result = await db.scalars(stmt, execution_options={"populate_existing": True})
            subscription = result.one()
            logger.info(
                "Upserted subscription %s (stripe %s): plan=%s, status=%s",
                subscription.id,
                subscription.external_subscription_id,
                subscription.plan_id,
                subscription.status,
            )
            return SubscriptionSnapshot.model_validate(subscription)

    async def update_by_external_id(
        self, external_id: str, changes: SubscriptionUpdate
    ) -> SubscriptionSnapshot | None:
        values = changes.values()
        async with self._transaction(
            "update",
            external_subscription_id=external_id,
            fields=values,
        ) as db:
            stmt = (
                update(Subscription)
                .where(Subscription.external_subscription_id == external_id)
                .values(**values)
                .returning(Subscription)
            )
            result = await db.scalars(stmt, execution_options={"populate_existing": True})
            subscription = result.one_or_none()
            if subscription is None:
                return None
            logger.info(
                "Updated subscription %s (stripe %s): %s",
                subscription.id,
                external_id,
                ", ".join(f"{k}={v}" for k, v in values.items()),
            )
            return SubscriptionSnapshot.model_validate(subscription)
