"""
Cascade Delete: vehicle and user removal across assignments and stock.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from fleetcore.core.clock import utcnow
from fleetcore.core.exceptions import Forbidden, InvalidLocation, NotFound, StorageUnavailable
from fleetcore.domain.assignments.assignment_engine import AssignmentEngine
from fleetcore.domain.cascade import cascade_delete
from fleetcore.domain.cascade.cascade_delete import CascadeDelete, DeleteStock, TransferTo
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.integrity.auditor import IntegrityAuditor
from fleetcore.domain.stock import stock_ledger
from fleetcore.domain.stock.stock_ledger import StockLedger, rows_at_location
from fleetcore.models.enums import UserRole
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.services.lookup import first_by_id

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def loaded_van(factory):
    """A vehicle holding three stock rows and assigned to a technician."""
    tenant = await factory.tenant()
    vehicle = await factory.vehicle(tenant)
    van = LocationRef.vehicle(vehicle.id)
    items = [await factory.item(tenant, name=f"Part {n}") for n in range(3)]
    for quantity, item in zip((4, 0, 9), items):
        await factory.stock(tenant, van, item, quantity=quantity)

    tech = await factory.user(tenant, UserRole.TECHNICIAN)
    assignment = await factory.assignment(vehicle, tech, JAN_1)
    return {
        "tenant": tenant,
        "vehicle_id": vehicle.id,
        "van": van,
        "items": items,
        "tech": tech,
        "assignment_id": assignment.id,
        "manager": await factory.user(tenant, UserRole.MANAGER),
        "admin": await factory.user(tenant, UserRole.ADMIN),
        "warehouse": await factory.warehouse(tenant),
    }


async def assignment_row(session, assignment_id):
    result = await session.execute(
        select(VehicleAssignment)
        .where(VehicleAssignment.id == assignment_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_delete_vehicle_drops_stock_and_closes_assignment(db_session, loaded_van, as_actor):
    summary = await CascadeDelete.delete_vehicle(
        db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"], DeleteStock()
    )

    assert summary["closed_assignment_id"] == loaded_van["assignment_id"]
    assert summary["stock_rows_deleted"] == 3
    assert summary["stock_rows_transferred"] == 0

    assert await first_by_id(db_session, Vehicle, loaded_van["vehicle_id"]) is None
    assert await rows_at_location(db_session, loaded_van["van"]) == []

    # History survives the vehicle
    closed = await assignment_row(db_session, loaded_van["assignment_id"])
    assert closed.end_date is not None
    history = await AssignmentEngine.history(
        db_session, as_actor(loaded_van["manager"]), vehicle_id=loaded_van["vehicle_id"]
    )
    assert [row.id for row in history] == [loaded_van["assignment_id"]]


@pytest.mark.asyncio
async def test_delete_vehicle_transfers_stock_to_warehouse(db_session, loaded_van, factory, as_actor):
    shelf = LocationRef.warehouse(loaded_van["warehouse"].id)
    first_item = loaded_van["items"][0]
    await factory.stock(loaded_van["tenant"], shelf, first_item, quantity=6)

    summary = await CascadeDelete.delete_vehicle(
        db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"], TransferTo(shelf)
    )

    assert summary["transferred_to"] == str(shelf)
    assert summary["stock_rows_transferred"] == 2
    assert summary["stock_rows_deleted"] == 1
    quantities = {row.inventory_item_id: row.quantity for row in await rows_at_location(db_session, shelf)}
    assert quantities == {first_item.id: 10, loaded_van["items"][2].id: 9}
    assert await rows_at_location(db_session, loaded_van["van"]) == []


@pytest.mark.asyncio
async def test_missing_transfer_target_applies_nothing(db_session, loaded_van, as_actor):
    with pytest.raises(NotFound):
        await CascadeDelete.delete_vehicle(
            db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"],
            TransferTo(LocationRef.warehouse("no-such-warehouse"))
        )

    assert await first_by_id(db_session, Vehicle, loaded_van["vehicle_id"]) is not None
    assert len(await rows_at_location(db_session, loaded_van["van"])) == 3
    still_open = await assignment_row(db_session, loaded_van["assignment_id"])
    assert still_open.end_date is None


@pytest.mark.asyncio
async def test_transfer_target_cannot_be_the_vehicle_itself(db_session, loaded_van, as_actor):
    with pytest.raises(InvalidLocation):
        await CascadeDelete.delete_vehicle(
            db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"], TransferTo(loaded_van["van"])
        )


@pytest.mark.asyncio
async def test_future_dated_assignment_closes_at_its_start(db_session, factory, as_actor):
    tenant = await factory.tenant()
    manager = await factory.user(tenant, UserRole.MANAGER)
    tech = await factory.user(tenant, UserRole.TECHNICIAN)
    vehicle = await factory.vehicle(tenant)
    start = utcnow() + timedelta(days=30)
    assignment = await factory.assignment(vehicle, tech, start)

    await CascadeDelete.delete_vehicle(db_session, as_actor(manager), vehicle.id, DeleteStock())

    closed = await assignment_row(db_session, assignment.id)
    assert closed.end_date == closed.start_date


@pytest.mark.asyncio
async def test_stock_arriving_during_planning_triggers_replan(db_session, loaded_van, monkeypatch, as_actor):
    real_rows_at_location = cascade_delete.rows_at_location
    calls = {"count": 0}

    async def first_plan_misses_everything(session, location):
        calls["count"] += 1
        if calls["count"] == 1:
            return []
        return await real_rows_at_location(session, location)

    monkeypatch.setattr(cascade_delete, "rows_at_location", first_plan_misses_everything)

    summary = await CascadeDelete.delete_vehicle(
        db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"], DeleteStock()
    )

    assert summary["stock_rows_deleted"] == 3
    assert calls["count"] == 4


@pytest.mark.asyncio
async def test_plan_that_never_settles_is_a_storage_failure(db_session, loaded_van, monkeypatch, as_actor):
    real_rows_at_location = cascade_delete.rows_at_location
    calls = {"count": 0}

    async def every_plan_misses(session, location):
        calls["count"] += 1
        if calls["count"] % 2 == 1:
            return []
        return await real_rows_at_location(session, location)

    monkeypatch.setattr(cascade_delete, "rows_at_location", every_plan_misses)

    with pytest.raises(StorageUnavailable):
        await CascadeDelete.delete_vehicle(
            db_session, as_actor(loaded_van["manager"]), loaded_van["vehicle_id"], DeleteStock()
        )

    assert await first_by_id(db_session, Vehicle, loaded_van["vehicle_id"]) is not None


@pytest.mark.asyncio
async def test_delete_user_closes_all_open_assignments(db_session, loaded_van, factory, as_actor):
    tech = loaded_van["tech"]
    second_vehicle = await factory.vehicle(loaded_van["tenant"])
    second = await factory.assignment(second_vehicle, tech, JAN_1)

    summary = await CascadeDelete.delete_user(db_session, as_actor(loaded_van["admin"]), tech.id)

    assert sorted(summary["closed_assignment_ids"]) == sorted([loaded_van["assignment_id"], second.id])
    assert await first_by_id(db_session, User, tech.id) is None
    for assignment_id in summary["closed_assignment_ids"]:
        assert (await assignment_row(db_session, assignment_id)).end_date is not None
    # Stock lives on vehicles and is untouched
    assert len(await rows_at_location(db_session, loaded_van["van"])) == 3


@pytest.mark.asyncio
async def test_owner_and_self_cannot_be_deleted(db_session, loaded_van, factory, as_actor):
    owner = await factory.user(loaded_van["tenant"], UserRole.OWNER)
    admin = as_actor(loaded_van["admin"])

    with pytest.raises(Forbidden):
        await CascadeDelete.delete_user(db_session, admin, owner.id)
    with pytest.raises(Forbidden):
        await CascadeDelete.delete_user(db_session, admin, loaded_van["admin"].id)
    with pytest.raises(Forbidden):
        await CascadeDelete.delete_user(db_session, as_actor(loaded_van["manager"]), loaded_van["tech"].id)

    assert await first_by_id(db_session, User, owner.id) is not None


@pytest.mark.asyncio
async def test_delete_vehicle_api(client, loaded_van, headers_for):
    shelf = LocationRef.warehouse(loaded_van["warehouse"].id)
    headers = headers_for(loaded_van["manager"])

    response = await client.delete(
        f"/v1/vehicles/{loaded_van['vehicle_id']}", params={"transfer_to": str(shelf)}, headers=headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["closed_assignment_id"] == loaded_van["assignment_id"]
    assert body["stock_rows_transferred"] == 2

    response = await client.get(f"/v1/vehicles/{loaded_van['vehicle_id']}", headers=headers)
    assert response.status_code == 404

    response = await client.get(f"/v1/vehicles/{loaded_van['vehicle_id']}/assignments", headers=headers)
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_delete_user_api(client, loaded_van, headers_for):
    response = await client.delete(
        f"/v1/users/{loaded_van['tech'].id}", headers=headers_for(loaded_van["admin"])
    )

    assert response.status_code == 200
    assert response.json()["closed_assignment_ids"] == [loaded_van["assignment_id"]]


@pytest.mark.asyncio
async def test_stock_write_in_flight_blocks_vehicle_delete(loaded_van, factory, session_factory, monkeypatch, as_actor):
    actor = as_actor(loaded_van["manager"])
    late_item = await factory.item(loaded_van["tenant"], name="Late part")
    checked, release = asyncio.Event(), asyncio.Event()
    real_require_location = stock_ledger.require_location

    async def require_then_wait(db, location, tenant_id):
        await real_require_location(db, location, tenant_id)
        checked.set()
        await release.wait()

    monkeypatch.setattr(stock_ledger, "require_location", require_then_wait)

    async def write():
        async with session_factory() as session:
            await StockLedger.set_quantity(session, actor, loaded_van["van"], late_item.id, 7)

    async def delete():
        async with session_factory() as session:
            return await CascadeDelete.delete_vehicle(session, actor, loaded_van["vehicle_id"], DeleteStock())

    writer = asyncio.create_task(write())
    await asyncio.wait_for(checked.wait(), timeout=5)
    deleter = asyncio.create_task(delete())
    await asyncio.sleep(0.05)

    # The write already validated the vehicle, so the delete waits for it
    assert not deleter.done()

    release.set()
    await asyncio.wait_for(writer, timeout=5)
    summary = await asyncio.wait_for(deleter, timeout=5)

    assert summary["stock_rows_deleted"] == 4
    async with session_factory() as session:
        assert await rows_at_location(session, loaded_van["van"]) == []
        assert (await IntegrityAuditor.check(session, loaded_van["tenant"].id)).clean


@pytest.mark.asyncio
async def test_concurrent_stock_writes_and_vehicle_delete_leave_no_orphans(loaded_van, factory, session_factory, monkeypatch, as_actor):
    monkeypatch.setattr(cascade_delete.settings, "lock_plan_attempts", 10)
    actor = as_actor(loaded_van["manager"])
    new_items = [await factory.item(loaded_van["tenant"], name=f"New part {n}") for n in range(3)]

    async def write(item):
        async with session_factory() as session:
            try:
                await StockLedger.set_quantity(session, actor, loaded_van["van"], item.id, 5)
            except NotFound:
                return "after"
            return "before"

    async def delete():
        async with session_factory() as session:
            return await CascadeDelete.delete_vehicle(session, actor, loaded_van["vehicle_id"], DeleteStock())

    *outcomes, summary = await asyncio.wait_for(
        asyncio.gather(*[write(item) for item in new_items], delete()), timeout=10
    )

    # Writes that landed first were swept up by the delete, the rest saw the vehicle gone
    assert summary["stock_rows_deleted"] == 3 + outcomes.count("before")
    async with session_factory() as session:
        assert await rows_at_location(session, loaded_van["van"]) == []
        assert await first_by_id(session, Vehicle, loaded_van["vehicle_id"]) is None
        assert (await IntegrityAuditor.check(session, loaded_van["tenant"].id)).clean


@pytest.mark.asyncio
async def test_stock_write_after_vehicle_delete_is_rejected(db_session, loaded_van, as_actor):
    actor = as_actor(loaded_van["manager"])
    await CascadeDelete.delete_vehicle(db_session, actor, loaded_van["vehicle_id"], DeleteStock())

    with pytest.raises(NotFound):
        await StockLedger.set_quantity(db_session, actor, loaded_van["van"], loaded_van["items"][0].id, 3)

    assert await rows_at_location(db_session, loaded_van["van"]) == []
