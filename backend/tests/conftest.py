"""Test fixtures for the storefront backend."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

from storefront.api import deps
from storefront.core.config import get_settings
from storefront.db.base import Base
from storefront.db.session import dispose_engine, get_sessionmaker
from storefront.main import app
from storefront.models import (
    PaymentMethod,
    RsvpSettings,
    Store,
    StoreFacility,
    StoreLevel,
)
from storefront.schemas.notification import ReservationEvent
from storefront.services.reservation_service import Actor


@dataclass
class RecordingDispatcher:
    """Collects every reservation event it is handed."""

    events: list[ReservationEvent] = field(default_factory=list)

    async def route_notification(self, event: ReservationEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.event_type.value for event in self.events]


def future_slot(days: int = 2, hour: int = 12) -> datetime:
    """Return a whole-hour UTC instant ``days`` from now."""
    base = datetime.now(UTC) + timedelta(days=days)
    return base.replace(hour=hour, minute=0, second=0, microsecond=0)


async def seed_store(
    session,
    *,
    level: StoreLevel = StoreLevel.FREE,
    uses_platform_gateway: bool = False,
    single_service_mode: bool = False,
    min_prepaid_percentage: int = 0,
    no_need_to_confirm: bool = False,
    can_cancel: bool = True,
    facility_hours: str | None = None,
    credit_exchange_rate: Decimal = Decimal("1"),
    use_customer_credit: bool = False,
) -> dict[str, object]:
    store = Store(
        name="Harbor Bistro",
        level=int(level),
        default_timezone="UTC",
        default_currency="usd",
        credit_exchange_rate=credit_exchange_rate,
        use_customer_credit=use_customer_credit,
        uses_platform_gateway=uses_platform_gateway,
    )
    session.add(store)
    await session.flush()

    session.add(
        RsvpSettings(
            store_id=store.id,
            accept_reservation=True,
            single_service_mode=single_service_mode,
            default_duration_minutes=60,
            min_prepaid_percentage=min_prepaid_percentage,
            no_need_to_confirm=no_need_to_confirm,
            can_cancel=can_cancel,
            cancel_hours=24,
        )
    )
    facility = StoreFacility(
        store_id=store.id,
        name="Window Table",
        default_duration_minutes=60,
        default_cost=Decimal("40.00"),
        business_hours=facility_hours,
    )
    payment_method = PaymentMethod(
        name="card",
        fee_rate=Decimal("0.03"),
        fee_additional=Decimal("0"),
        clear_days=3,
    )
    session.add_all([facility, payment_method])
    await session.commit()
    await session.refresh(store)
    return {
        "store": store,
        "store_id": store.id,
        "facility_id": facility.id,
        "payment_method_id": payment_method.id,
    }


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def staff() -> Actor:
    return Actor(user_id=uuid.uuid4(), is_staff=True)


@pytest.fixture()
def customer() -> Actor:
    return Actor(user_id=uuid.uuid4())


@pytest_asyncio.fixture()
async def app_context(
    reset_database: AsyncIterator[None],
    db_url: str,
    dispatcher: RecordingDispatcher,
) -> AsyncIterator[dict[str, object]]:
    """Yield an async client and a seeded store."""
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        context = await seed_store(session)

    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            context["client"] = client
            context["dispatcher"] = dispatcher
            yield context
    finally:
        app.dependency_overrides.pop(deps.get_dispatcher, None)


@pytest.fixture()
def store_factory():
    """Return the store seeding helper."""
    return seed_store


@pytest.fixture()
def slot():
    """Return the future slot helper."""
    return future_slot
