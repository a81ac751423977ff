"""
Test Configuration — Fixtures for async DB, test client, fake provider and seed data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_provider
from api.main import app
from core.security import encrypt
from db.session import Base
from integrations.base import PaymentProvider
from promotion.errors import ExternalServiceError

# Use in-memory SQLite for tests.
# Shared cache so session-scoped engine and function-scoped sessions
# can share the same in-memory database.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CREATOR_ID = "00000000-0000-0000-0000-000000000001"
UNCONNECTED_CREATOR_ID = "00000000-0000-0000-0000-000000000002"


class FakeProvider(PaymentProvider):
    """In-memory payment provider that records every call."""

    name = "fake"

    def __init__(self, *, fail_on: str | None = None, delay: float = 0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.calls: list[dict] = []
        self.products: dict[str, dict] = {}
        self.prices: dict[str, dict] = {}

    def calls_for(self, operation: str) -> list[dict]:
        return [call for call in self.calls if call["operation"] == operation]

    async def _step(self, operation: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on == operation:
            raise ExternalServiceError(f"Stripe rejected the {operation} request", status_code=400)

    async def create_product(self, environment, account, request, *, idempotency_key=None):
        self.calls.append(
            {
                "operation": "product",
                "environment": environment,
                "account": account,
                "request": request,
                "idempotency_key": idempotency_key,
            }
        )
        await self._step("product")
        external_id = f"prod_live_{len(self.products) + 1}"
        self.products[external_id] = {
            "id": external_id,
            "name": request.name,
            "active": request.active,
            "metadata": dict(request.metadata),
        }
        return external_id

    async def create_price(self, environment, account, request, *, idempotency_key=None):
        self.calls.append(
            {
                "operation": "price",
                "environment": environment,
                "account": account,
                "request": request,
                "idempotency_key": idempotency_key,
            }
        )
        await self._step("price")
        external_id = f"price_live_{len(self.prices) + 1}"
        self.prices[external_id] = {
            "id": external_id,
            "product": request.product_external_id,
            "unit_amount": request.unit_amount_minor,
            "currency": request.currency,
            "recurring": request.recurring,
            "active": True,
            "metadata": dict(request.metadata),
        }
        return external_id

    async def find_product_by_metadata(self, environment, account, key, value):
        for product in self.products.values():
            if product["metadata"].get(key) == value:
                return product
        return None

    async def find_active_price(self, environment, account, product_external_id):
        for price in self.prices.values():
            if price["product"] == product_external_id and price["active"]:
                return price
        return None


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def mock_user():
    """Mock authenticated creator."""
    return {
        "sub": "creator|test-user-id",
        "email": "test@golive.dev",
        "creator_id": CREATOR_ID,
    }


@pytest.fixture
async def client(test_db, mock_user, fake_provider):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    def override_get_provider():
        return fake_provider

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_provider] = override_get_provider

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with a connected creator, an unconnected one and their products."""
    from db.models import Creator, Product

    creator_id = uuid.UUID(CREATOR_ID)
    unconnected_id = uuid.UUID(UNCONNECTED_CREATOR_ID)

    test_db.add_all(
        [
            Creator(
                creator_id=creator_id,
                name="Ada Courses",
                email="ada@courses.dev",
                stripe_account_id="acct_1TestCreator",
                stripe_test_token_encrypted=encrypt("sk_test_ada"),
                stripe_production_token_encrypted=encrypt("sk_live_ada"),
                production_enabled=True,
            ),
            Creator(
                creator_id=unconnected_id,
                name="Bo Unlinked",
                email="bo@unlinked.dev",
            ),
        ]
    )
    await test_db.flush()

    ready = Product(
        creator_id=creator_id,
        name="Pro Plan",
        description="",
        price=Decimal("29.99"),
        currency="usd",
        product_kind="one_time",
        test_product_external_id="tp_1",
        test_price_external_id="tpr_1",
    )
    subscription = Product(
        creator_id=creator_id,
        name="Monthly Membership",
        description="Every course, every month",
        price=Decimal("9.50"),
        currency="EUR",
        product_kind="subscription",
        test_product_external_id="tp_2",
        test_price_external_id="tpr_2",
    )
    invalid = Product(
        creator_id=creator_id,
        name="",
        price=Decimal("0"),
        currency="usd",
    )
    deployed = Product(
        creator_id=creator_id,
        name="Starter Kit",
        description="Everything you need to start",
        price=Decimal("15.00"),
        currency="usd",
        test_product_external_id="tp_3",
        test_price_external_id="tpr_3",
        production_product_external_id="prod_live_existing",
        production_price_external_id="price_live_existing",
    )
    retired = Product(
        creator_id=creator_id,
        name="Retired Workshop",
        description="No longer sold anywhere",
        price=Decimal("49.00"),
        currency="usd",
        test_product_external_id="tp_4",
        test_price_external_id="tpr_4",
        active=False,
    )
    unconnected_product = Product(
        creator_id=unconnected_id,
        name="Ebook",
        description="A very good ebook",
        price=Decimal("5.00"),
        currency="usd",
        test_product_external_id="tp_9",
        test_price_external_id="tpr_9",
    )
    test_db.add_all([ready, subscription, invalid, deployed, retired, unconnected_product])
    await test_db.flush()

    await test_db.commit()

    return {
        "creator_id": creator_id,
        "unconnected_creator_id": unconnected_id,
        "ready": ready,
        "subscription": subscription,
        "invalid": invalid,
        "deployed": deployed,
        "retired": retired,
        "unconnected_product": unconnected_product,
    }
