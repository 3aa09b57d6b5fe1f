"""
Transfer requests (Domain Logic).

A manager asks for stock to move from a warehouse onto a vehicle; the
technician holding the vehicle accepts (the stock moves) or rejects it
(nothing moves). A request is addressed to the technician assigned when it
was made, and it can only be accepted while that technician still holds
the vehicle.

Accepting runs the regular stock transfer under the same stock and vehicle
keys, plus the technician's user key, so it serializes with vehicle and
user deletion. Both deletions reject whatever is still pending.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.clock import utcnow
from fleetcore.core.exceptions import Forbidden, InvalidAssignment, InvalidQuantity, NotFound, TransferNotPending
from fleetcore.core.guards import Operation, enforce, is_permitted
from fleetcore.core.locks import user_key, vehicle_key
from fleetcore.db.transaction import serialized
from fleetcore.domain.assignments.assignment_engine import open_assignment_for_vehicle
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.stock.stock_ledger import location_keys, transfer_locked
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.pending_transfer import PendingTransfer
from fleetcore.models.stock_enums import PendingTransferStatus
from fleetcore.models.vehicle import Vehicle
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import first_by_id, get_or_404, require_location

logger = logging.getLogger(__name__)


def request_keys(request: PendingTransfer) -> List[str]:
    source = LocationRef.warehouse(request.from_warehouse_id)
    destination = LocationRef.vehicle(request.to_vehicle_id)
    return (
        location_keys(source, request.inventory_item_id)
        + location_keys(destination, request.inventory_item_id)
        + [user_key(request.assigned_technician_id)]
    )


def _mark_processed(request: PendingTransfer, status: PendingTransferStatus, reason: Optional[str] = None) -> None:
    request.status = status
    request.processed_at = utcnow()
    request.rejection_reason = reason


async def reject_pending(
    db: AsyncSession,
    tenant_id: str,
    reason: str,
    vehicle_id: Optional[str] = None,
    technician_id: Optional[str] = None
) -> List[str]:
    """
    Reject every pending request for a vehicle or technician being removed.

    The caller holds the vehicle:<id> or user:<id> key.

    Returns:
        Ids of the rejected requests
    """
    query = select(PendingTransfer).where(
        PendingTransfer.tenant_id == tenant_id,
        PendingTransfer.status == PendingTransferStatus.PENDING
    )
    if vehicle_id is not None:
        query = query.where(PendingTransfer.to_vehicle_id == vehicle_id)
    if technician_id is not None:
        query = query.where(PendingTransfer.assigned_technician_id == technician_id)

    result = await db.execute(query.execution_options(populate_existing=True))
    rejected = []
    for request in result.scalars().all():
        _mark_processed(request, PendingTransferStatus.REJECTED, reason)
        rejected.append(request.id)
    return rejected


class TransferRequests:

    @staticmethod
    async def request(
        db: AsyncSession,
        actor: Actor,
        warehouse_id: str,
        vehicle_id: str,
        item_id: str,
        quantity: int,
        notes: Optional[str] = None
    ) -> PendingTransfer:
        """
        Ask the technician holding a vehicle to accept stock from a warehouse.

        Raises:
            InvalidQuantity: If quantity <= 0
            NotFound: If the warehouse, vehicle or item does not exist in the tenant
            InvalidAssignment: If nobody is assigned to the vehicle
        """
        enforce(actor, Operation.STOCK_TRANSFER_REQUEST)
        if quantity <= 0:
            raise InvalidQuantity(quantity, "Transfer quantity must be positive")

        async with serialized(db, [vehicle_key(vehicle_id)]):
            await require_location(db, LocationRef.warehouse(warehouse_id), actor.tenant_id)
            await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")
            await get_or_404(db, InventoryItem, item_id, actor.tenant_id, "InventoryItem")

            assignment = await open_assignment_for_vehicle(db, vehicle_id)
            if assignment is None:
                raise InvalidAssignment(
                    "Vehicle has no assigned technician to accept the transfer",
                    details={"vehicle_id": vehicle_id}
                )

            request = PendingTransfer(
                tenant_id=actor.tenant_id,
                inventory_item_id=item_id,
                from_warehouse_id=warehouse_id,
                to_vehicle_id=vehicle_id,
                quantity=quantity,
                notes=notes,
                requested_by=actor.user_id,
                assigned_technician_id=assignment.user_id
            )
            db.add(request)
            await db.flush()

            record_event(
                db,
                AuditAction.TRANSFER_REQUESTED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="pending_transfer",
                target_id=request.id,
                metadata={
                    "item_id": item_id,
                    "from": str(LocationRef.warehouse(warehouse_id)),
                    "to": str(LocationRef.vehicle(vehicle_id)),
                    "quantity": quantity,
                    "technician_id": assignment.user_id
                }
            )

        logger.info("Transfer %s requested: %d x %s to vehicle %s", request.id, quantity, item_id, vehicle_id)
        return request

    @staticmethod
    async def accept(db: AsyncSession, actor: Actor, transfer_id: str) -> PendingTransfer:
        """
        Accept a pending request and move the stock onto the vehicle.

        If the warehouse cannot cover the quantity, the request stays pending
        and nothing moves.

        Raises:
            NotFound: If the request is missing or not visible to the caller
            TransferNotPending: If it was already accepted or rejected
            Forbidden: If the caller is not the addressed technician, or no
                longer holds the vehicle
            InsufficientStock: If the warehouse holds less than the quantity
        """
        enforce(actor, Operation.STOCK_TRANSFER_RESPOND)
        planned = await TransferRequests._visible(db, actor, transfer_id)

        async with serialized(db, request_keys(planned)):
            request = await TransferRequests._pending_for_caller(db, actor, transfer_id)

            assignment = await open_assignment_for_vehicle(db, request.to_vehicle_id)
            if assignment is None or assignment.user_id != actor.user_id:
                raise Forbidden(
                    "You are no longer assigned to the destination vehicle",
                    details={"transfer_id": transfer_id, "vehicle_id": request.to_vehicle_id}
                )

            source = LocationRef.warehouse(request.from_warehouse_id)
            await require_location(db, source, actor.tenant_id)
            await get_or_404(db, InventoryItem, request.inventory_item_id, actor.tenant_id, "InventoryItem")
            await transfer_locked(
                db, actor, source, LocationRef.vehicle(request.to_vehicle_id),
                request.inventory_item_id, request.quantity,
                reason=f"transfer_request:{request.id}"
            )

            _mark_processed(request, PendingTransferStatus.ACCEPTED)
            await db.flush()
            record_event(
                db,
                AuditAction.TRANSFER_ACCEPTED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="pending_transfer",
                target_id=request.id,
                metadata={"quantity": request.quantity, "item_id": request.inventory_item_id}
            )

        logger.info("Transfer %s accepted by %s", transfer_id, actor.user_id)
        return request

    @staticmethod
    async def reject(db: AsyncSession, actor: Actor, transfer_id: str, reason: Optional[str] = None) -> PendingTransfer:
        """
        Reject a pending request. A blank reason is stored as none.

        Raises:
            NotFound: If the request is missing or not visible to the caller
            TransferNotPending: If it was already accepted or rejected
            Forbidden: If the caller is not the addressed technician
        """
        enforce(actor, Operation.STOCK_TRANSFER_RESPOND)
        planned = await TransferRequests._visible(db, actor, transfer_id)

        keys = [vehicle_key(planned.to_vehicle_id), user_key(planned.assigned_technician_id)]
        async with serialized(db, keys):
            request = await TransferRequests._pending_for_caller(db, actor, transfer_id)
            _mark_processed(request, PendingTransferStatus.REJECTED, (reason or "").strip() or None)
            await db.flush()
            record_event(
                db,
                AuditAction.TRANSFER_REJECTED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="pending_transfer",
                target_id=request.id,
                metadata={"reason": request.rejection_reason}
            )

        logger.info("Transfer %s rejected by %s", transfer_id, actor.user_id)
        return request

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        status: Optional[PendingTransferStatus] = PendingTransferStatus.PENDING
    ) -> List[PendingTransfer]:
        """Technicians see requests addressed to them; managers see the whole tenant."""
        enforce(actor, Operation.STOCK_TRANSFER_RESPOND)
        query = select(PendingTransfer).where(PendingTransfer.tenant_id == actor.tenant_id)
        if not is_permitted(actor.role, Operation.STOCK_TRANSFER_REQUEST):
            query = query.where(PendingTransfer.assigned_technician_id == actor.user_id)
        if status is not None:
            query = query.where(PendingTransfer.status == status)
        result = await db.execute(query.order_by(PendingTransfer.requested_at.desc(), PendingTransfer.pk.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def get(db: AsyncSession, actor: Actor, transfer_id: str) -> PendingTransfer:
        enforce(actor, Operation.STOCK_TRANSFER_RESPOND)
        return await TransferRequests._visible(db, actor, transfer_id)

    @staticmethod
    async def _visible(db: AsyncSession, actor: Actor, transfer_id: str) -> PendingTransfer:
        request = await first_by_id(db, PendingTransfer, transfer_id, actor.tenant_id)
        if request is None:
            raise NotFound("TransferRequest", transfer_id)
        if (
            not is_permitted(actor.role, Operation.STOCK_TRANSFER_REQUEST)
            and request.assigned_technician_id != actor.user_id
        ):
            raise NotFound("TransferRequest", transfer_id)
        return request

    @staticmethod
    async def _pending_for_caller(db: AsyncSession, actor: Actor, transfer_id: str) -> PendingTransfer:
        request = await TransferRequests._visible(db, actor, transfer_id)
        if not request.is_pending:
            raise TransferNotPending(transfer_id, request.status.value)
        if request.assigned_technician_id != actor.user_id:
            raise Forbidden(
                "Only the technician the request is addressed to can answer it",
                details={"transfer_id": transfer_id}
            )
        return request
