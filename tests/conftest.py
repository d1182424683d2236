"""
Pytest configuration and shared test fixtures.

This module provides an isolated SQLite database per test, a controllable
clock, seeded marketplace data (users, products, service listings), the
lifecycle service wired to them, and an async HTTP client for API tests.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///./agrimarket-test.db")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-the-lifecycle-suite")
os.environ.setdefault("APP_BOOKING_TIMEZONE", "UTC")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from agrimarket.api.deps import get_lifecycle_service
from agrimarket.api.rate_limit import limiter
from agrimarket.core.config import get_settings
from agrimarket.core.security import create_access_token
from agrimarket.database.base import Base
from agrimarket.database.connection import create_engine, create_session_factory, get_db
from agrimarket.database.models import Product, ServiceListing, User
from agrimarket.main import app
from agrimarket.schemas.lifecycle import BookingCreate, OrderCreate, TicketCreate
from agrimarket.services.lifecycle.actors import Actor
from agrimarket.services.lifecycle.enums import PricingType, ProductStatus, UserRole
from agrimarket.services.lifecycle.payments import SimulatedPaymentGateway
from agrimarket.services.lifecycle.service import LifecycleService

FIXED_NOW = datetime(2025, 5, 20, 8, 0, tzinfo=timezone.utc)
SCENARIO_DATE = date(2025, 6, 1)


class FrozenClock:
    """Clock returning a fixed instant that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class Marketplace:
    """Seeded users and catalog entries shared by lifecycle tests."""

    admin: User
    rep: User
    buyer: User
    seller: User
    other_seller: User
    provider: User
    farmer: User
    inactive_rep: User
    rice: Product
    chillies: Product
    discontinued: Product
    foreign_product: Product
    ploughing: ServiceListing
    harvesting: ServiceListing
    retired_listing: ServiceListing


@pytest.fixture
def clock() -> FrozenClock:
    """Clock fixed at 2025-05-20 08:00 UTC."""
    return FrozenClock(FIXED_NOW)


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a file-backed SQLite engine with the full schema.

    Yields:
        AsyncEngine: Engine bound to a database private to the test
    """
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the service under test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def marketplace(session_factory: async_sessionmaker[AsyncSession]) -> Marketplace:
    """
    Seed users, products and service listings.

    Returns:
        Marketplace: Seeded entities, detached from any session
    """

    def user(email: str, role: UserRole, is_active: bool = True) -> User:
        return User(email=email, full_name=email.split("@")[0], role=role, is_active=is_active)

    admin = user("admin@agrimarket.lk", UserRole.ADMIN)
    rep = user("rep@agrimarket.lk", UserRole.CUSTOMER_SERVICE_REP)
    buyer = user("buyer@agrimarket.lk", UserRole.FARMER)
    seller = user("seller@agrimarket.lk", UserRole.FARMER)
    other_seller = user("other.seller@agrimarket.lk", UserRole.FARMER)
    provider = user("provider@agrimarket.lk", UserRole.SERVICE_PROVIDER)
    farmer = user("farmer@agrimarket.lk", UserRole.FARMER)
    inactive_rep = user("former.rep@agrimarket.lk", UserRole.CUSTOMER_SERVICE_REP, False)
    users = [admin, rep, buyer, seller, other_seller, provider, farmer, inactive_rep]

    async with session_factory() as session:
        session.add_all(users)
        await session.flush()

        rice = Product(
            seller_id=seller.id,
            name="Samba rice",
            status=ProductStatus.AVAILABLE,
            price_amount=Decimal("150.00"),
            price_unit="kg",
            currency="LKR",
            quantity_available=10,
        )
        chillies = Product(
            seller_id=seller.id,
            name="Green chillies",
            status=ProductStatus.AVAILABLE,
            price_amount=Decimal("420.50"),
            price_unit="kg",
            currency="LKR",
            quantity_available=5,
        )
        discontinued = Product(
            seller_id=seller.id,
            name="Old seed stock",
            status=ProductStatus.DISCONTINUED,
            price_amount=Decimal("80.00"),
            price_unit="bag",
            currency="LKR",
            quantity_available=100,
        )
        foreign_product = Product(
            seller_id=other_seller.id,
            name="Red onions",
            status=ProductStatus.AVAILABLE,
            price_amount=Decimal("300.00"),
            price_unit="kg",
            currency="LKR",
            quantity_available=50,
        )
        ploughing = ServiceListing(
            provider_id=provider.id,
            title="Tractor ploughing",
            service_type="ploughing",
            pricing_type=PricingType.PER_ACRE,
            price_amount=Decimal("2500.00"),
            currency="LKR",
            is_active=True,
        )
        harvesting = ServiceListing(
            provider_id=provider.id,
            title="Combine harvesting",
            service_type="harvesting",
            pricing_type=PricingType.FIXED,
            price_amount=Decimal("18000.00"),
            currency="LKR",
            is_active=True,
        )
        retired_listing = ServiceListing(
            provider_id=provider.id,
            title="Drone spraying",
            service_type="spraying",
            pricing_type=PricingType.FIXED,
            price_amount=Decimal("5000.00"),
            currency="LKR",
            is_active=False,
        )
        session.add_all(
            [rice, chillies, discontinued, foreign_product, ploughing, harvesting, retired_listing]
        )
        await session.commit()

    return Marketplace(
        admin=admin,
        rep=rep,
        buyer=buyer,
        seller=seller,
        other_seller=other_seller,
        provider=provider,
        farmer=farmer,
        inactive_rep=inactive_rep,
        rice=rice,
        chillies=chillies,
        discontinued=discontinued,
        foreign_product=foreign_product,
        ploughing=ploughing,
        harvesting=harvesting,
        retired_listing=retired_listing,
    )


@pytest.fixture
def actor_for() -> Callable[[User], Actor]:
    """Build the verified actor for a seeded user."""

    def _actor(user: User) -> Actor:
        return Actor(id=user.id, role=user.role)

    return _actor


@pytest.fixture
def approving_gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway(success_rate=1.0)


@pytest.fixture
def service(
    session: AsyncSession,
    clock: FrozenClock,
    approving_gateway: SimulatedPaymentGateway,
) -> LifecycleService:
    """Lifecycle service with an approving gateway and the frozen clock."""
    return LifecycleService(
        session,
        payment_gateway=approving_gateway,
        settings=get_settings(),
        clock=clock,
    )


@pytest.fixture
def order_request(marketplace: Marketplace) -> Callable[..., OrderCreate]:
    """Factory for order requests; defaults to three kilos of rice."""

    def _request(items=None, **overrides) -> OrderCreate:
        payload = {
            "items": items or [{"product_id": marketplace.rice.id, "quantity": 3}],
            "payment_method": "cash_on_delivery",
            "delivery_method": "pickup",
        }
        payload.update(overrides)
        return OrderCreate.model_validate(payload)

    return _request


@pytest.fixture
def booking_request(marketplace: Marketplace) -> Callable[..., BookingCreate]:
    """Factory for booking requests; defaults to ploughing 2 acres on 2025-06-01 09:00."""

    def _request(**overrides) -> BookingCreate:
        payload = {
            "service_listing_id": marketplace.ploughing.id,
            "booking_date": SCENARIO_DATE,
            "booking_time": "09:00",
            "field_size": Decimal("2.00"),
            "payment_method": "demo_card",
            "card_last4": "4242",
        }
        payload.update(overrides)
        return BookingCreate.model_validate(payload)

    return _request


@pytest.fixture
def ticket_request() -> Callable[..., TicketCreate]:
    def _request(**overrides) -> TicketCreate:
        payload = {
            "title": "Tractor arrived late",
            "description": "The provider arrived three hours after the booked time.",
            "issue_type": "service_complaint",
            "priority": "medium",
        }
        payload.update(overrides)
        return TicketCreate.model_validate(payload)

    return _request


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Bearer headers carrying a signed token for a seeded user."""

    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
    marketplace: Marketplace,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous test client bound to the test database.

    The database dependency and the lifecycle service are overridden so the
    API uses the per-test database, the frozen clock and an approving
    payment gateway.

    Yields:
        AsyncClient: Asynchronous test client for the FastAPI app
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_lifecycle_service() -> AsyncGenerator[LifecycleService, None]:
        async with session_factory() as session:
            yield LifecycleService(
                session,
                payment_gateway=SimulatedPaymentGateway(success_rate=1.0),
                settings=get_settings(),
                clock=clock,
            )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_lifecycle_service] = override_lifecycle_service
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
