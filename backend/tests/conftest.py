"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (``aiosqlite`` + ``StaticPool``
so every session shares the one connection), a seeded plan catalog, and
mocked Stripe API / metrics collaborators.
"""

import hashlib
import hmac
import json
import time
import uuid
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billing_sync.api.deps import get_reconciler
from billing_sync.billing.metrics import MetricsSink
from billing_sync.billing.reconciler import BillingReconciler, build_reconciler
from billing_sync.billing.stripe_client import StripeGateway
from billing_sync.config import Settings
from billing_sync.database import Base
from billing_sync.main import create_app
from billing_sync.models import Plan
from billing_sync.services.plan_catalog import SqlPlanLookup
from billing_sync.services.subscription_repository import SqlSubscriptionRepository

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"

# ---------------------------------------------------------------------------
# Plan catalog seeded into every test database
# ---------------------------------------------------------------------------

PLAN_PRO = "plan_pro"
PLAN_COACH = "plan_ai_coach"
PRICE_PRO_MONTHLY = "price_pro_monthly"
PRICE_PRO_YEARLY = "price_pro_yearly"
PRICE_COACH_MONTHLY = "price_coach_monthly"
PRICE_COACH_YEARLY = "price_coach_yearly"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        fallback_period_days=30,
        fallback_period_anchor="event",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    """Create an async engine on a fresh in-memory SQLite database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        db.add_all(
            [
                Plan(
                    id=PLAN_PRO,
                    name="Pro",
                    stripe_price_id_monthly=PRICE_PRO_MONTHLY,
                    stripe_price_id_yearly=PRICE_PRO_YEARLY,
                ),
                Plan(
                    id=PLAN_COACH,
                    name="AI Coach",
                    stripe_price_id_monthly=PRICE_COACH_MONTHLY,
                    stripe_price_id_yearly=PRICE_COACH_YEARLY,
                ),
            ]
        )
        await db.commit()
    yield factory


@pytest.fixture
def repository(session_factory) -> SqlSubscriptionRepository:
    return SqlSubscriptionRepository(session_factory)


@pytest.fixture
def plan_lookup(session_factory) -> SqlPlanLookup:
    return SqlPlanLookup(session_factory)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> AsyncMock:
    """Stripe API gateway; tests set ``get_subscription.return_value``."""
    return AsyncMock(spec=StripeGateway)


@pytest.fixture
def metrics() -> AsyncMock:
    return AsyncMock(spec=MetricsSink)


@pytest.fixture
def reconciler(test_settings, repository, plan_lookup, gateway, metrics) -> BillingReconciler:
    return build_reconciler(
        test_settings,
        repository=repository,
        plan_lookup=plan_lookup,
        gateway=gateway,
        metrics=metrics,
    )


@pytest_asyncio.fixture
async def client(test_settings, reconciler) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test reconciler."""
    app = create_app(test_settings)
    app.dependency_overrides[get_reconciler] = lambda: reconciler

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Stripe payload builders
# ---------------------------------------------------------------------------


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``stripe-signature`` header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_envelope(event_type: str, data_object: dict[str, Any], created: int = 1709251200) -> dict[str, Any]:
    """Create a Stripe event envelope dict."""
    return {
        "id": f"evt_test_{uuid.uuid4().hex[:8]}",
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": data_object},
    }


def encode(envelope: dict[str, Any]) -> bytes:
    return json.dumps(envelope).encode()


def make_stripe_sub(
    sub_id: str = "sub_test_123",
    price_id: str = PRICE_PRO_MONTHLY,
    status: str = "active",
    period_start: int | None = 1706745600,  # 2024-02-01
    interval: str = "month",
    interval_count: int = 1,
    cancel_at_period_end: bool = False,
    customer: str = "cus_test_123",
    metadata: dict[str, str] | None = None,
    unit_amount: int = 2900,
    currency: str = "usd",
) -> dict[str, Any]:
    """Create a Stripe Subscription object dict (item-level period, API basil)."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": metadata or {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": f"si_{sub_id}",
                    "current_period_start": period_start,
                    "price": {
                        "id": price_id,
                        "unit_amount": unit_amount,
                        "currency": currency,
                        "recurring": {"interval": interval, "interval_count": interval_count},
                    },
                }
            ],
        },
    }
