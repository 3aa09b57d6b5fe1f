"""
Centralized Test Configuration.
"""

import uuid
from datetime import datetime
from typing import Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from fleetcore.main import app
from fleetcore.db.session import get_db, Base
from fleetcore.core import locks
from fleetcore.core.config import settings
from fleetcore.core.jwt import create_access_token
from fleetcore.domain.stock.location import LocationRef
from fleetcore.models.enums import SubscriptionTier, UserRole
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.stock_location_item import StockLocationItem
from fleetcore.models.tenant import Tenant, TenantSettings
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.models.warehouse import Warehouse
from fleetcore.services.identity import Actor

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Route the app's database dependency to the test engine for the whole session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database(monkeypatch):
    """Create tables before each test function and drop after."""
    # Fresh in-process lock registry and no retry delay per test
    monkeypatch.setattr(locks, "lock_manager", locks.LocalLockBackend())
    monkeypatch.setattr(settings, "storage_retry_backoff_seconds", 0.0)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Factory for independent sessions (one per concurrent caller)."""
    return TestingSessionLocal


class Factory:
    """Inserts committed rows directly, bypassing the domain rules under test."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, row):
        self.session.add(row)
        await self.session.commit()
        return row

    async def delete(self, row) -> None:
        await self.session.delete(row)
        await self.session.commit()

    async def tenant(self, tier: SubscriptionTier = SubscriptionTier.BASIC, tenant_id: Optional[str] = None, **settings_fields) -> Tenant:
        tenant = await self._save(Tenant(id=tenant_id or f"tenant-{uuid.uuid4().hex[:8]}", name="Acme Plumbing", tier=tier))
        if settings_fields:
            await self._save(TenantSettings(tenant_id=tenant.id, **settings_fields))
        return tenant

    async def user(self, tenant: Tenant, role: UserRole = UserRole.TECHNICIAN, is_active: bool = True, **fields) -> User:
        email = fields.pop("email", f"{role.value.lower()}-{uuid.uuid4().hex[:6]}@example.com")
        return await self._save(User(tenant_id=tenant.id, email=email, full_name=role.value.title(), role=role, is_active=is_active, **fields))

    async def vehicle(self, tenant: Tenant, **fields) -> Vehicle:
        values = {"vin": uuid.uuid4().hex[:17].upper(), "make": "Ford", "model": "Transit", "year": 2021}
        values.update(fields)
        return await self._save(Vehicle(tenant_id=tenant.id, **values))

    async def warehouse(self, tenant: Tenant, name: str = "Main depot", **fields) -> Warehouse:
        return await self._save(Warehouse(tenant_id=tenant.id, name=name, **fields))

    async def item(self, tenant: Tenant, name: str = "Copper fitting", price_per_unit: float = 2.5, **fields) -> InventoryItem:
        return await self._save(InventoryItem(tenant_id=tenant.id, name=name, price_per_unit=price_per_unit, **fields))

    async def stock(self, tenant: Tenant, location: LocationRef, item: InventoryItem, quantity: int, minimum: int = 0, maximum: Optional[int] = None, **fields) -> StockLocationItem:
        return await self._save(StockLocationItem(
            tenant_id=tenant.id,
            inventory_item_id=item.id,
            quantity=quantity,
            minimum_stock_level=minimum,
            max_stock_level=maximum,
            **location.column_values(),
            **fields
        ))

    async def assignment(self, vehicle: Vehicle, user: User, start_date: datetime, end_date: Optional[datetime] = None, **fields) -> VehicleAssignment:
        return await self._save(VehicleAssignment(
            tenant_id=vehicle.tenant_id,
            vehicle_id=vehicle.id,
            user_id=user.id,
            start_date=start_date,
            end_date=end_date,
            **fields
        ))


@pytest.fixture
async def factory():
    # Own session: a rollback in the session under test must not expire fixture rows
    async with TestingSessionLocal() as session:
        yield Factory(session)


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, tenant_id=user.tenant_id, role=user.role)


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_actor():
    return actor_for


@pytest.fixture
def headers_for():
    return auth_headers
