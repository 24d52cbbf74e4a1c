"""Tests for resolving the owning user of an event."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from billing_sync.billing.events import parse_event
from billing_sync.billing.owners import SubscriptionResolver
from billing_sync.billing.status import BillingCycle, SubscriptionStatus
from billing_sync.schemas.stripe import StripeEventEnvelope
from billing_sync.schemas.subscription import SubscriptionFields
from billing_sync.services.subscription_repository import SubscriptionRepository
from conftest import PLAN_PRO, make_envelope, make_stripe_sub


def _updated(**sub_kwargs):
    envelope = StripeEventEnvelope.model_validate(
        make_envelope("customer.subscription.updated", make_stripe_sub(**sub_kwargs))
    )
    return parse_event(envelope)


@pytest.fixture
def resolver(repository) -> SubscriptionResolver:
    return SubscriptionResolver(repository)


class TestResolveUser:
    @pytest.mark.asyncio
    async def test_metadata_wins(self, resolver):
        assert await resolver.resolve_user(_updated(metadata={"userId": "user_meta"})) == "user_meta"

    @pytest.mark.asyncio
    async def test_metadata_skips_store(self):
        repository = AsyncMock(spec=SubscriptionRepository)
        resolver = SubscriptionResolver(repository)
        assert await resolver.resolve_user(_updated(metadata={"user_id": "user_snake"})) == "user_snake"
        repository.find_by_external_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverse_lookup(self, resolver, repository):
        await repository.create(
            SubscriptionFields(
                user_id="user_stored",
                plan_id=PLAN_PRO,
                external_subscription_id="sub_owned",
                status=SubscriptionStatus.ACTIVE,
                billing_cycle=BillingCycle.MONTHLY,
                current_period_start=datetime(2024, 2, 1),
                current_period_end=datetime(2024, 3, 1),
            )
        )
        assert await resolver.resolve_user(_updated(sub_id="sub_owned")) == "user_stored"

    @pytest.mark.asyncio
    async def test_unresolvable(self, resolver):
        assert await resolver.resolve_user(_updated(sub_id="sub_orphan")) is None
