"""
Test fixtures for the fulfillment scheduler tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Test data factories for sectors, slots, vendors, couriers and orders
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

os.environ.setdefault("ADMIN_SECRET", "test_admin_secret")
# DB settings required by Settings validation (tests use SQLite in-memory, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["TIMEZONE"] = "Asia/Kolkata"
os.environ["AUTO_ASSIGN_ENABLED"] = "false"
os.environ["AUTO_ASSIGN_CAPACITY"] = "30"
os.environ["REQUIRE_VERIFIED_COURIERS"] = "true"
os.environ["STORE_RETRY_BACKOFF_SECONDS"] = "0.01"
# No dispatcher in tests: notify() logs and returns False
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

import pytest
from datetime import date, time
from typing import AsyncGenerator, List

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.base import Base
from backend.app.main import app
from backend.app.api.deps import get_session, get_cache
from backend.app.models.sector import Sector
from backend.app.models.slot import DeliverySlot, SlotCapacity
from backend.app.models.courier import Courier
from backend.app.models.vendor import Vendor
from backend.app.models.order import Order, OrderItem
import backend.app.models.assignment  # noqa: F401 - register tables with Base.metadata
import backend.app.models.fulfillment  # noqa: F401


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_HEADERS = {"X-Admin-Token": "test_admin_secret"}

# Monday
SERVICE_DATE = date(2024, 1, 1)


# Create test engine with StaticPool for in-memory SQLite
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class MockCacheService:
    """Mock Redis cache for testing without actual Redis."""

    def __init__(self):
        self._cache = {}

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def get_sectors(self, city_name=None):
        return self._cache.get(f"sectors:city:{city_name.lower()}" if city_name else "sectors:all")

    async def set_sectors(self, sectors, city_name=None):
        self._cache[f"sectors:city:{city_name.lower()}" if city_name else "sectors:all"] = sectors

    async def get_sector_for_pincode(self, pincode: str):
        return self._cache.get(f"sectors:pincode:{pincode}")

    async def set_sector_for_pincode(self, pincode: str, sector):
        self._cache[f"sectors:pincode:{pincode}"] = sector

    async def invalidate_sectors(self):
        keys_to_remove = [k for k in self._cache if k.startswith("sectors:")]
        for k in keys_to_remove:
            self._cache.pop(k, None)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def mock_cache() -> MockCacheService:
    """Provide mock cache service for testing."""
    return MockCacheService()


@pytest.fixture
async def client(
    test_session: AsyncSession,
    mock_cache: MockCacheService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database and cache dependencies.

    Note: We create a fresh session for each API call to avoid
    transaction conflicts with the test_session used for fixtures.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return dict(ADMIN_HEADERS)


# --- Test Data Factories ---

@pytest.fixture
async def test_sector(test_session: AsyncSession) -> Sector:
    """Create an active sector covering two pincodes."""
    sector = Sector(
        name="Indiranagar",
        city_name="Bengaluru",
        pincodes=["560008", "560038"],
        is_active=True,
    )
    test_session.add(sector)
    await test_session.commit()
    await test_session.refresh(sector)
    return sector


@pytest.fixture
async def test_slot(test_session: AsyncSession, test_sector: Sector) -> DeliverySlot:
    """Create a slot: window 11:00-13:00, cutoff 10:00, pickup 45 min after cutoff, 30 orders."""
    slot = DeliverySlot(
        sector_id=test_sector.id,
        name="Late morning",
        start_time=time(11, 0),
        end_time=time(13, 0),
        cutoff_time=time(10, 0),
        pickup_delay_minutes=45,
        max_orders=30,
        base_max_orders=30,
        is_active=True,
        day_of_week=None,
    )
    test_session.add(slot)
    await test_session.commit()
    await test_session.refresh(slot)
    return slot


@pytest.fixture
async def test_vendors(test_session: AsyncSession) -> List[Vendor]:
    """Create two vendors (A and B)."""
    vendors = [
        Vendor(business_name="Vendor A", address="12 CMH Road", phone="+919800000001"),
        Vendor(business_name="Vendor B", address="80 Feet Road", phone="+919800000002"),
    ]
    test_session.add_all(vendors)
    await test_session.commit()
    for vendor in vendors:
        await test_session.refresh(vendor)
    return vendors


@pytest.fixture
async def test_courier(test_session: AsyncSession) -> Courier:
    """Create a verified, active courier covering the test sector."""
    courier = Courier(
        profile_id="courier-1",
        name="Ravi",
        phone="+919900000001",
        vehicle_type="bike",
        is_verified=True,
        is_active=True,
        coverage_pincodes=["560038"],
        rating=4.5,
    )
    test_session.add(courier)
    await test_session.commit()
    await test_session.refresh(courier)
    return courier


@pytest.fixture
async def second_courier(test_session: AsyncSession) -> Courier:
    """A second verified courier with a lower rating and no coverage yet."""
    courier = Courier(
        profile_id="courier-2",
        name="Anita",
        phone="+919900000002",
        vehicle_type="scooter",
        is_verified=True,
        is_active=True,
        coverage_pincodes=["560008"],
        rating=4.0,
    )
    test_session.add(courier)
    await test_session.commit()
    await test_session.refresh(courier)
    return courier


@pytest.fixture
def make_order(test_session: AsyncSession):
    """Factory: create an order on a slot with one item per given vendor."""
    counter = {"n": 0}

    async def _make(
        slot: DeliverySlot,
        vendor_ids: List[int],
        service_date: date = SERVICE_DATE,
        status: str = "placed",
    ) -> Order:
        counter["n"] += 1
        order = Order(
            order_number=f"ORD-{counter['n']:04d}",
            customer_id=1000 + counter["n"],
            sector_id=slot.sector_id,
            slot_id=slot.id,
            delivery_date=service_date,
            delivery_pincode="560038",
            address=f"{counter['n']} Main Road",
            total_amount=250,
            status=status,
        )
        test_session.add(order)
        await test_session.flush()
        for vendor_id in vendor_ids:
            test_session.add(OrderItem(
                order_id=order.id,
                vendor_id=vendor_id,
                product_name=f"Item from vendor {vendor_id}",
                quantity=2,
                unit_price=50,
            ))
        await test_session.commit()
        await test_session.refresh(order)
        return order

    return _make


@pytest.fixture
async def scenario_orders(test_slot: DeliverySlot, test_vendors: List[Vendor], make_order) -> List[Order]:
    """Five orders on SERVICE_DATE: three from vendor A, two from vendor B."""
    vendor_a, vendor_b = test_vendors
    orders = []
    for vendor in (vendor_a, vendor_a, vendor_a, vendor_b, vendor_b):
        orders.append(await make_order(test_slot, [vendor.id]))
    return orders


@pytest.fixture
def set_committed(test_session: AsyncSession):
    """Factory: seed the capacity ledger for a slot and date."""
    async def _set(slot_id: int, committed: int, service_date: date = SERVICE_DATE) -> SlotCapacity:
        row = SlotCapacity(slot_id=slot_id, service_date=service_date, committed_orders=committed)
        test_session.add(row)
        await test_session.commit()
        return row

    return _set
