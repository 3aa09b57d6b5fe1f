"""
Quota Ledger: tier limits, live recounts and concurrent creations.
"""

import asyncio

import pytest
from sqlalchemy import select, func

from fleetcore.core.exceptions import QuotaExceeded
from fleetcore.domain.quota.quota_ledger import QuotaLedger, decide, resource_class_for_role
from fleetcore.domain.quota.tiers import per_unit_charge, quota_for_tier
from fleetcore.models.enums import ResourceClass, SubscriptionTier, UserRole
from fleetcore.models.vehicle import Vehicle
from fleetcore.schemas.user import UserCreate
from fleetcore.schemas.vehicle import VehicleCreate
from fleetcore.services import fleet_registry, user_registry


def new_vehicle(vin: str) -> VehicleCreate:
    return VehicleCreate(vin=vin, make="Ford", model="Transit", year=2022)


def test_decide_is_strict_at_the_limit():
    allowed = decide(SubscriptionTier.TRIAL, ResourceClass.VEHICLE, 4)
    denied = decide(SubscriptionTier.TRIAL, ResourceClass.VEHICLE, 5)

    assert allowed.allowed is True
    assert allowed.limit == 5
    assert denied.denied is True
    assert denied.limit == 5
    assert denied.current == 5


def test_enterprise_is_uncapped_and_billed_per_vehicle():
    decision = decide(SubscriptionTier.ENTERPRISE, ResourceClass.VEHICLE, 10_000)

    assert decision.allowed is True
    assert decision.limit is None
    assert per_unit_charge(SubscriptionTier.ENTERPRISE, ResourceClass.VEHICLE) == 50.0
    assert per_unit_charge(SubscriptionTier.PRO, ResourceClass.VEHICLE) == 0.0


def test_tier_table():
    assert quota_for_tier(SubscriptionTier.BASIC, ResourceClass.MANAGER) == 1
    assert quota_for_tier(SubscriptionTier.PRO, ResourceClass.VEHICLE) == 15
    assert quota_for_tier(SubscriptionTier.PRO, ResourceClass.MANAGER) == 4
    assert quota_for_tier(SubscriptionTier.PRO, ResourceClass.TECHNICIAN) == 15


def test_resource_class_for_role():
    assert resource_class_for_role(UserRole.TECHNICIAN) == ResourceClass.TECHNICIAN
    assert resource_class_for_role(UserRole.MANAGER) == ResourceClass.MANAGER
    assert resource_class_for_role(UserRole.ADMIN) == ResourceClass.MANAGER
    assert resource_class_for_role(UserRole.OWNER) is None


@pytest.mark.asyncio
async def test_usage_counts_active_seats_only(db_session, factory):
    tenant = await factory.tenant()
    await factory.user(tenant, UserRole.OWNER)
    await factory.user(tenant, UserRole.ADMIN)
    await factory.user(tenant, UserRole.MANAGER, is_active=False)
    await factory.user(tenant, UserRole.TECHNICIAN)
    await factory.user(tenant, UserRole.TECHNICIAN)

    assert await QuotaLedger.current_usage(db_session, tenant.id, ResourceClass.MANAGER) == 1
    assert await QuotaLedger.current_usage(db_session, tenant.id, ResourceClass.TECHNICIAN) == 2
    assert await QuotaLedger.current_usage(db_session, tenant.id, ResourceClass.VEHICLE) == 0


@pytest.mark.asyncio
async def test_create_vehicle_stops_at_tier_limit(db_session, factory, as_actor):
    tenant = await factory.tenant(SubscriptionTier.BASIC)
    manager = await factory.user(tenant, UserRole.MANAGER)
    for _ in range(4):
        await factory.vehicle(tenant)

    fifth = await fleet_registry.create_vehicle(db_session, as_actor(manager), new_vehicle("VIN00000000000005"))
    assert fifth.id

    with pytest.raises(QuotaExceeded) as exc_info:
        await fleet_registry.create_vehicle(db_session, as_actor(manager), new_vehicle("VIN00000000000006"))

    assert exc_info.value.details["limit"] == 5
    assert exc_info.value.details["current"] == 5
    count = await db_session.execute(select(func.count(Vehicle.pk)).where(Vehicle.tenant_id == tenant.id))
    assert count.scalar() == 5


@pytest.mark.asyncio
async def test_deleting_a_vehicle_frees_quota(db_session, factory, as_actor):
    tenant = await factory.tenant(SubscriptionTier.TRIAL)
    manager = await factory.user(tenant, UserRole.MANAGER)
    vehicles = [await factory.vehicle(tenant) for _ in range(5)]

    status = await QuotaLedger.status(db_session, tenant.id, ResourceClass.VEHICLE)
    assert status["allowed"] is False

    await factory.delete(vehicles[0])

    status = await QuotaLedger.status(db_session, tenant.id, ResourceClass.VEHICLE)
    assert status["current"] == 4
    assert status["allowed"] is True
    created = await fleet_registry.create_vehicle(db_session, as_actor(manager), new_vehicle("VIN0000000000000X"))
    assert created.tenant_id == tenant.id


@pytest.mark.asyncio
async def test_concurrent_creations_never_exceed_limit(factory, session_factory, as_actor):
    tenant = await factory.tenant(SubscriptionTier.BASIC)
    manager = await factory.user(tenant, UserRole.MANAGER)
    for _ in range(4):
        await factory.vehicle(tenant)
    actor = as_actor(manager)

    async def register(n):
        async with session_factory() as session:
            return await fleet_registry.create_vehicle(session, actor, new_vehicle(f"CONCURRENT{n:07d}"))

    results = await asyncio.gather(*(register(n) for n in range(3)), return_exceptions=True)

    created = [result for result in results if isinstance(result, Vehicle)]
    denied = [result for result in results if isinstance(result, QuotaExceeded)]
    assert len(created) == 1
    assert len(denied) == 2

    async with session_factory() as session:
        count = await session.execute(select(func.count(Vehicle.pk)).where(Vehicle.tenant_id == tenant.id))
        assert count.scalar() == 5


@pytest.mark.asyncio
async def test_manager_seats_limited_and_owner_not_counted(db_session, factory, as_actor):
    tenant = await factory.tenant(SubscriptionTier.BASIC)
    owner = await factory.user(tenant, UserRole.OWNER)

    admin = await user_registry.create_user(
        db_session, as_actor(owner), UserCreate(email="admin@example.com", full_name="Ada", role=UserRole.ADMIN)
    )
    assert admin.role == UserRole.ADMIN

    with pytest.raises(QuotaExceeded) as exc_info:
        await user_registry.create_user(
            db_session, as_actor(owner), UserCreate(email="mgr@example.com", full_name="Max", role=UserRole.MANAGER)
        )
    assert exc_info.value.details["resource_class"] == "MANAGER"


@pytest.mark.asyncio
async def test_quota_endpoint(client, factory, headers_for):
    tenant = await factory.tenant(SubscriptionTier.PRO)
    manager = await factory.user(tenant, UserRole.MANAGER)
    await factory.vehicle(tenant)
    await factory.vehicle(tenant)

    response = await client.get(f"/v1/quota/{tenant.id}/vehicle", headers=headers_for(manager))

    assert response.status_code == 200
    data = response.json()
    assert data["current"] == 2
    assert data["limit"] == 15
    assert data["allowed"] is True


@pytest.mark.asyncio
async def test_quota_endpoint_hides_other_tenants(client, factory, headers_for):
    tenant = await factory.tenant()
    other = await factory.tenant()
    manager = await factory.user(tenant, UserRole.MANAGER)

    response = await client.get(f"/v1/quota/{other.id}/vehicle", headers=headers_for(manager))
    assert response.status_code == 404

    response = await client.get(f"/v1/quota/{tenant.id}/forklift", headers=headers_for(manager))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_vehicle_registration_over_quota_returns_402(client, factory, headers_for):
    tenant = await factory.tenant(SubscriptionTier.TRIAL)
    manager = await factory.user(tenant, UserRole.MANAGER)
    for _ in range(5):
        await factory.vehicle(tenant)

    response = await client.post(
        "/v1/vehicles",
        json={"vin": "1FTBW2CM5HKA00001", "make": "Ford", "model": "Transit", "year": 2023},
        headers=headers_for(manager)
    )

    assert response.status_code == 402
    body = response.json()
    assert body["error_code"] == "ERR_QUOTA_001"
    assert body["details"]["upgrade_required"] is True
