import datetime as dt
import os
import sys
from decimal import Decimal
from pathlib import Path

os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("JOB_SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from cafe_api.app import create_app  # noqa: E402
from cafe_api.db.base import Base  # noqa: E402
from cafe_api.db.session import get_session, get_session_factory  # noqa: E402
from cafe_api.models.loyalty import LoyaltyPoints  # noqa: E402
from cafe_api.models.order import DeliveryMethodEnum, Order, PaymentMethodEnum  # noqa: E402
from cafe_api.models.user import User, UserRoleEnum  # noqa: E402
from cafe_api.observability.ledger import get_ledger_store  # noqa: E402
from cafe_api.observability.scheduler import get_scheduler_store  # noqa: E402
from cafe_api.services.orders.checkout import CheckoutService, LineItem  # noqa: E402


@pytest.fixture(autouse=True)
def reset_observability():
    get_ledger_store().reset()
    get_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app_with_db):
    app, _ = app_with_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


async def create_user(
    session_factory,
    *,
    email: str,
    role: str = UserRoleEnum.CUSTOMER.value,
    name: str | None = None,
    points: int | None = None,
) -> User:
    async with session_factory() as session:
        user = User(email=email, role=role, name=name or email.split("@")[0].title())
        session.add(user)
        await session.flush()
        if points is not None:
            session.add(LoyaltyPoints(user_id=user.id, points=points))
        await session.commit()
        return user


@pytest.fixture
def make_user(session_factory):
    async def _make(**kwargs) -> User:
        return await create_user(session_factory, **kwargs)

    return _make


@pytest_asyncio.fixture
async def customer(session_factory) -> User:
    return await create_user(session_factory, email="ana@example.com", name="Ana", points=0)


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    return await create_user(session_factory, email="barista@example.com", role=UserRoleEnum.ADMIN.value, name="Barista")


@pytest_asyncio.fixture
async def super_admin(session_factory) -> User:
    return await create_user(
        session_factory,
        email="owner@example.com",
        role=UserRoleEnum.SUPER_ADMIN.value,
        name="Owner",
    )


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2026, 1, 15, 9, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta) -> dt.datetime:
        self.now = self.now + dt.timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_order(session_factory, clock):
    async def _make(
        user: User,
        *,
        unit_price: Decimal = Decimal("250.00"),
        quantity: int = 1,
        delivery_method: DeliveryMethodEnum = DeliveryMethodEnum.PICKUP,
        payment_method: PaymentMethodEnum = PaymentMethodEnum.IN_STORE,
        points_to_redeem: int = 0,
        delivery_fee: Decimal = Decimal("0"),
    ) -> Order:
        async with session_factory() as session:
            return await CheckoutService(session, clock=clock).place_order(
                user.id,
                [LineItem(product_id="latte", product_name="Spanish Latte", unit_price=unit_price, quantity=quantity)],
                delivery_method=delivery_method,
                payment_method=payment_method,
                points_to_redeem=points_to_redeem,
                delivery_fee=delivery_fee,
                delivery_address="12 Mabini St" if delivery_method == DeliveryMethodEnum.DELIVERY else None,
            )

    return _make
