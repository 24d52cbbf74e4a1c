"""Tests for the SQL subscription repository."""

from datetime import datetime

import pytest

from billing_sync.billing.errors import RepositoryError
from billing_sync.billing.status import BillingCycle, SubscriptionStatus
from billing_sync.schemas.subscription import SubscriptionFields, SubscriptionUpdate
from conftest import PLAN_COACH, PLAN_PRO


def _fields(**overrides) -> SubscriptionFields:
    values = {
        "user_id": "user_1",
        "plan_id": PLAN_PRO,
        "external_customer_id": "cus_1",
        "external_subscription_id": "sub_repo_1",
        "status": SubscriptionStatus.ACTIVE,
        "billing_cycle": BillingCycle.MONTHLY,
        "current_period_start": datetime(2024, 2, 1),
        "current_period_end": datetime(2024, 3, 1),
        "cancel_at_period_end": False,
    }
    values.update(overrides)
    return SubscriptionFields(**values)


class TestLookup:
    @pytest.mark.asyncio
    async def test_missing_returns_none(self, repository):
        assert await repository.find_by_external_id("sub_missing") is None

    @pytest.mark.asyncio
    async def test_find_after_create(self, repository):
        created = await repository.create(_fields())
        found = await repository.find_by_external_id("sub_repo_1")
        assert found == created
        assert found.status is SubscriptionStatus.ACTIVE
        assert found.billing_cycle is BillingCycle.MONTHLY


class TestCreate:
    @pytest.mark.asyncio
    async def test_duplicate_external_id_raises(self, repository):
        await repository.create(_fields())
        with pytest.raises(RepositoryError) as exc_info:
            await repository.create(_fields(user_id="user_2"))
        assert exc_info.value.context["external_subscription_id"] == "sub_repo_1"
        assert exc_info.value.context["operation"] == "create"


class TestUpsert:
    @pytest.mark.asyncio
    async def test_inserts_when_absent(self, repository):
        snapshot = await repository.upsert(_fields())
        assert snapshot.external_subscription_id == "sub_repo_1"
        assert await repository.find_by_external_id("sub_repo_1") == snapshot

    @pytest.mark.asyncio
    async def test_refreshes_mutable_columns_only(self, repository):
        original = await repository.upsert(_fields())
        refreshed = await repository.upsert(
            _fields(
                user_id="user_other",
                plan_id=PLAN_COACH,
                status=SubscriptionStatus.PAST_DUE,
                billing_cycle=BillingCycle.YEARLY,
                current_period_end=datetime(2025, 2, 1),
                cancel_at_period_end=True,
            )
        )

        assert refreshed.id == original.id
        assert refreshed.user_id == "user_1"
        assert refreshed.plan_id == PLAN_COACH
        assert refreshed.status is SubscriptionStatus.PAST_DUE
        assert refreshed.billing_cycle is BillingCycle.YEARLY
        assert refreshed.current_period_end == datetime(2025, 2, 1)
        assert refreshed.cancel_at_period_end is True


class TestUpdate:
    @pytest.mark.asyncio
    async def test_applies_only_given_fields(self, repository):
        original = await repository.create(_fields())
        updated = await repository.update_by_external_id(
            "sub_repo_1", SubscriptionUpdate(status=SubscriptionStatus.CANCELED)
        )

        assert updated.id == original.id
        assert updated.status is SubscriptionStatus.CANCELED
        assert updated.plan_id == original.plan_id
        assert updated.current_period_end == original.current_period_end

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, repository):
        result = await repository.update_by_external_id(
            "sub_missing", SubscriptionUpdate(status=SubscriptionStatus.CANCELED)
        )
        assert result is None


class TestWriteModels:
    def test_fields_reject_inverted_period(self):
        with pytest.raises(ValueError):
            _fields(current_period_start=datetime(2024, 3, 1), current_period_end=datetime(2024, 2, 1))

    def test_update_requires_both_period_bounds(self):
        with pytest.raises(ValueError):
            SubscriptionUpdate(current_period_end=datetime(2024, 3, 1))

    def test_update_values_skip_unset(self):
        changes = SubscriptionUpdate(status=SubscriptionStatus.CANCELED, cancel_at_period_end=True)
        assert changes.values() == {"status": "canceled", "cancel_at_period_end": True}
