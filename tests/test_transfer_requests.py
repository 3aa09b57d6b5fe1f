"""
Transfer requests: a manager asks, the technician holding the vehicle answers.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from fleetcore.core.exceptions import (
    Forbidden,
    InsufficientStock,
    InvalidAssignment,
    InvalidQuantity,
    NotFound,
    TransferNotPending,
)
from fleetcore.domain.assignments.assignment_engine import AssignmentEngine
from fleetcore.domain.cascade.cascade_delete import CascadeDelete, DeleteStock
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.stock.stock_ledger import get_row
from fleetcore.domain.stock.transfer_requests import TransferRequests
from fleetcore.models.enums import UserRole
from fleetcore.models.pending_transfer import PendingTransfer
from fleetcore.models.stock_enums import PendingTransferStatus
from fleetcore.models.stock_transfer import StockTransfer

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def yard(factory):
    """A warehouse holding ten fittings and a van assigned to a technician."""
    tenant = await factory.tenant()
    vehicle = await factory.vehicle(tenant)
    warehouse = await factory.warehouse(tenant)
    item = await factory.item(tenant)
    tech = await factory.user(tenant, UserRole.TECHNICIAN)
    await factory.assignment(vehicle, tech, JAN_1)
    await factory.stock(tenant, LocationRef.warehouse(warehouse.id), item, quantity=10)
    return {
        "tenant": tenant,
        "vehicle_id": vehicle.id,
        "warehouse_id": warehouse.id,
        "item_id": item.id,
        "van": LocationRef.vehicle(vehicle.id),
        "shelf": LocationRef.warehouse(warehouse.id),
        "tech": tech,
        "other_tech": await factory.user(tenant, UserRole.TECHNICIAN),
        "manager": await factory.user(tenant, UserRole.MANAGER),
    }


async def ask(db_session, yard, as_actor, quantity=4):
    request = await TransferRequests.request(
        db_session, as_actor(yard["manager"]),
        yard["warehouse_id"], yard["vehicle_id"], yard["item_id"], quantity, notes="Restock for Monday"
    )
    return request.id


async def stored(session, transfer_id):
    result = await session.execute(
        select(PendingTransfer)
        .where(PendingTransfer.id == transfer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def quantity_at(session, location, item_id):
    row = await get_row(session, location, item_id)
    return row.quantity if row is not None else None


@pytest.mark.asyncio
async def test_request_is_addressed_to_assigned_technician(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)

    request = await stored(db_session, transfer_id)
    assert request.status == PendingTransferStatus.PENDING
    assert request.assigned_technician_id == yard["tech"].id
    assert request.requested_by == yard["manager"].id
    assert request.processed_at is None
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 10


@pytest.mark.asyncio
async def test_request_needs_an_assigned_vehicle(db_session, factory, yard, as_actor):
    idle = await factory.vehicle(yard["tenant"])

    with pytest.raises(InvalidAssignment):
        await TransferRequests.request(
            db_session, as_actor(yard["manager"]), yard["warehouse_id"], idle.id, yard["item_id"], 2
        )

    with pytest.raises(InvalidQuantity):
        await TransferRequests.request(
            db_session, as_actor(yard["manager"]), yard["warehouse_id"], yard["vehicle_id"], yard["item_id"], 0
        )


@pytest.mark.asyncio
async def test_technician_cannot_request(db_session, yard, as_actor):
    with pytest.raises(Forbidden):
        await TransferRequests.request(
            db_session, as_actor(yard["tech"]), yard["warehouse_id"], yard["vehicle_id"], yard["item_id"], 1
        )


@pytest.mark.asyncio
async def test_accept_moves_stock_and_logs_transfer(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)

    request = await TransferRequests.accept(db_session, as_actor(yard["tech"]), transfer_id)

    assert request.status == PendingTransferStatus.ACCEPTED
    assert request.processed_at is not None
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 6
    assert await quantity_at(db_session, yard["van"], yard["item_id"]) == 4

    result = await db_session.execute(select(StockTransfer))
    (logged,) = result.scalars().all()
    assert logged.from_location == str(yard["shelf"])
    assert logged.to_location == str(yard["van"])
    assert logged.quantity == 4
    assert logged.reason == f"transfer_request:{transfer_id}"


@pytest.mark.asyncio
async def test_reject_stores_reason_and_moves_nothing(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)

    request = await TransferRequests.reject(db_session, as_actor(yard["tech"]), transfer_id, "  Van is full ")

    assert request.status == PendingTransferStatus.REJECTED
    assert request.rejection_reason == "Van is full"
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 10
    assert await quantity_at(db_session, yard["van"], yard["item_id"]) is None


@pytest.mark.asyncio
async def test_request_is_answered_once(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)
    tech = as_actor(yard["tech"])
    await TransferRequests.accept(db_session, tech, transfer_id)

    with pytest.raises(TransferNotPending) as exc_info:
        await TransferRequests.accept(db_session, tech, transfer_id)
    assert exc_info.value.status_code == 409

    with pytest.raises(TransferNotPending):
        await TransferRequests.reject(db_session, tech, transfer_id)

    assert await quantity_at(db_session, yard["van"], yard["item_id"]) == 4


@pytest.mark.asyncio
async def test_only_the_addressed_technician_answers(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)

    with pytest.raises(NotFound):
        await TransferRequests.accept(db_session, as_actor(yard["other_tech"]), transfer_id)

    with pytest.raises(Forbidden):
        await TransferRequests.accept(db_session, as_actor(yard["manager"]), transfer_id)

    with pytest.raises(Forbidden):
        await TransferRequests.reject(db_session, as_actor(yard["manager"]), transfer_id)

    assert (await stored(db_session, transfer_id)).is_pending


@pytest.mark.asyncio
async def test_insufficient_stock_keeps_request_pending(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor, quantity=25)

    with pytest.raises(InsufficientStock):
        await TransferRequests.accept(db_session, as_actor(yard["tech"]), transfer_id)

    assert (await stored(db_session, transfer_id)).is_pending
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 10
    assert await quantity_at(db_session, yard["van"], yard["item_id"]) is None


@pytest.mark.asyncio
async def test_reassigned_technician_can_no_longer_accept(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)
    await AssignmentEngine.reassign(
        db_session, as_actor(yard["manager"]), yard["vehicle_id"], yard["other_tech"].id
    )

    with pytest.raises(Forbidden):
        await TransferRequests.accept(db_session, as_actor(yard["tech"]), transfer_id)

    assert (await stored(db_session, transfer_id)).is_pending
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 10

    # Still answerable with a rejection
    request = await TransferRequests.reject(db_session, as_actor(yard["tech"]), transfer_id)
    assert request.status == PendingTransferStatus.REJECTED


@pytest.mark.asyncio
async def test_technicians_list_only_their_requests(db_session, factory, yard, as_actor):
    other_van = await factory.vehicle(yard["tenant"])
    await factory.assignment(other_van, yard["other_tech"], JAN_1)
    mine = await ask(db_session, yard, as_actor)
    await TransferRequests.request(
        db_session, as_actor(yard["manager"]), yard["warehouse_id"], other_van.id, yard["item_id"], 1
    )

    listed = await TransferRequests.list_requests(db_session, as_actor(yard["tech"]))
    assert [request.id for request in listed] == [mine]

    everything = await TransferRequests.list_requests(db_session, as_actor(yard["manager"]))
    assert len(everything) == 2

    await TransferRequests.reject(db_session, as_actor(yard["tech"]), mine)
    assert await TransferRequests.list_requests(db_session, as_actor(yard["tech"])) == []
    rejected = await TransferRequests.list_requests(
        db_session, as_actor(yard["tech"]), PendingTransferStatus.REJECTED
    )
    assert [request.id for request in rejected] == [mine]


@pytest.mark.asyncio
async def test_deleting_vehicle_rejects_pending_requests(db_session, yard, as_actor):
    transfer_id = await ask(db_session, yard, as_actor)

    summary = await CascadeDelete.delete_vehicle(
        db_session, as_actor(yard["manager"]), yard["vehicle_id"], DeleteStock()
    )

    assert summary["rejected_transfer_ids"] == [transfer_id]
    request = await stored(db_session, transfer_id)
    assert request.status == PendingTransferStatus.REJECTED
    assert request.rejection_reason == "vehicle_deleted"
    assert await quantity_at(db_session, yard["shelf"], yard["item_id"]) == 10


@pytest.mark.asyncio
async def test_deleting_technician_rejects_pending_requests(db_session, factory, yard, as_actor):
    admin = await factory.user(yard["tenant"], UserRole.ADMIN)
    transfer_id = await ask(db_session, yard, as_actor)

    summary = await CascadeDelete.delete_user(db_session, as_actor(admin), yard["tech"].id)

    assert summary["rejected_transfer_ids"] == [transfer_id]
    request = await stored(db_session, transfer_id)
    assert request.rejection_reason == "technician_deleted"


@pytest.mark.asyncio
async def test_transfer_request_api_flow(client, yard, headers_for):
    response = await client.post(
        "/v1/stock/transfer-requests",
        json={
            "warehouse_id": yard["warehouse_id"],
            "vehicle_id": yard["vehicle_id"],
            "item_id": yard["item_id"],
            "quantity": 3,
        },
        headers=headers_for(yard["manager"]),
    )
    assert response.status_code == 201
    transfer_id = response.json()["id"]
    assert response.json()["status"] == "pending"

    response = await client.get("/v1/stock/transfer-requests", headers=headers_for(yard["tech"]))
    assert [request["id"] for request in response.json()["requests"]] == [transfer_id]

    response = await client.get(
        f"/v1/stock/transfer-requests/{transfer_id}", headers=headers_for(yard["other_tech"])
    )
    assert response.status_code == 404

    response = await client.post(
        f"/v1/stock/transfer-requests/{transfer_id}/accept", headers=headers_for(yard["tech"])
    )
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"

    response = await client.post(
        f"/v1/stock/transfer-requests/{transfer_id}/reject",
        json={"reason": "Too late"},
        headers=headers_for(yard["tech"]),
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_STOCK_005"

    response = await client.get(f"/v1/stock/{yard['van']}/{yard['item_id']}", headers=headers_for(yard["tech"]))
    assert response.json()["quantity"] == 3
