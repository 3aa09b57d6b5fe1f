"""
Cascade Delete (Domain Logic).

Removing a vehicle or a technician touches several aggregates at once: the
open assignment timeline, the stock held on the vehicle, and the entity row
itself. Each removal is a single serialized unit of work, so a concurrent
reader observes either everything before or everything after.

The key set depends on the data (which items sit on the vehicle, which
vehicles the user holds), so it is planned from a first read, locked, and
re-checked. When the data moved in between, the plan is rebuilt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Set, Union

from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.clock import as_utc, utcnow
from fleetcore.core.config import settings
from fleetcore.core.exceptions import Forbidden, InvalidLocation, StorageUnavailable
from fleetcore.core.guards import Operation, enforce
from fleetcore.core.locks import stock_key, user_key, vehicle_key
from fleetcore.db.transaction import StalePlan, serialized
from fleetcore.domain.assignments.assignment_engine import (
    close_row,
    open_assignment_for_vehicle,
    open_assignments_for_user,
)
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.stock.stock_ledger import rows_at_location, transfer_locked
from fleetcore.domain.stock.transfer_requests import reject_pending
from fleetcore.models.enums import UserRole
from fleetcore.models.stock_enums import LocationType
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import get_or_404, require_location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteStock:
    """Drop every stock row held on the vehicle."""


@dataclass(frozen=True)
class TransferTo:
    """Move the full quantity of every stock row to another location."""
    location: LocationRef


StockDisposition = Union[DeleteStock, TransferTo]


def end_for(assignment: VehicleAssignment, now: datetime) -> datetime:
    # A future-dated assignment is closed as a zero-length interval
    return max(now, as_utc(assignment.start_date))


def stock_keys(location: LocationRef, item_ids: Iterable[str]) -> List[str]:
    return [stock_key(str(location), item_id) for item_id in item_ids]


class CascadeDelete:

    @staticmethod
    async def delete_vehicle(
        db: AsyncSession,
        actor: Actor,
        vehicle_id: str,
        disposition: StockDisposition
    ) -> dict:
        """
        Delete a vehicle together with its assignment and stock.

        1. Close the open assignment (end date = now).
        2. Delete each stock row on the vehicle, or transfer its full
           quantity to the target location.
        3. Delete the vehicle row.

        All three steps commit together; if any step fails nothing is applied.

        Args:
            db: Database session
            actor: Resolved caller
            vehicle_id: Vehicle to remove
            disposition: DeleteStock() or TransferTo(location)

        Returns:
            Summary dict with the closed assignment id and the stock row counts

        Raises:
            NotFound: If the vehicle or the transfer target does not exist
            InvalidLocation: If the transfer target is the vehicle itself
            StorageUnavailable: If the plan kept going stale
        """
        enforce(actor, Operation.VEHICLE_DELETE)
        source = LocationRef.vehicle(vehicle_id)

        if isinstance(disposition, TransferTo) and disposition.location == source:
            raise InvalidLocation("Cannot transfer stock to the vehicle being deleted", str(source))

        for attempt in range(1, settings.lock_plan_attempts + 1):
            planned = {row.inventory_item_id for row in await rows_at_location(db, source)}

            keys = [vehicle_key(vehicle_id)] + stock_keys(source, planned)
            if isinstance(disposition, TransferTo):
                keys += stock_keys(disposition.location, planned)
                if disposition.location.kind == LocationType.VEHICLE:
                    keys.append(vehicle_key(disposition.location.id))

            try:
                async with serialized(db, keys):
                    summary = await CascadeDelete._delete_vehicle_locked(
                        db, actor, vehicle_id, disposition, planned
                    )
            except StalePlan:
                logger.info("Stock on vehicle %s changed while planning (attempt %d), re-planning", vehicle_id, attempt)
                continue

            logger.info(
                "Vehicle %s deleted (assignment closed=%s, stock rows deleted=%d, transferred=%d)",
                vehicle_id, summary["closed_assignment_id"],
                summary["stock_rows_deleted"], summary["stock_rows_transferred"]
            )
            return summary

        raise StorageUnavailable(f"Could not obtain a stable lock plan for vehicle {vehicle_id}")

    @staticmethod
    async def _delete_vehicle_locked(
        db: AsyncSession,
        actor: Actor,
        vehicle_id: str,
        disposition: StockDisposition,
        planned: Set[str]
    ) -> dict:
        vehicle = await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")
        source = LocationRef.vehicle(vehicle_id)
        target = disposition.location if isinstance(disposition, TransferTo) else None
        if target is not None:
            await require_location(db, target, actor.tenant_id)

        rows = await rows_at_location(db, source)
        if {row.inventory_item_id for row in rows} - planned:
            raise StalePlan()

        now = utcnow()
        closed_id = None
        assignment = await open_assignment_for_vehicle(db, vehicle_id)
        if assignment is not None:
            close_row(assignment, end_for(assignment, now), actor.user_id)
            closed_id = assignment.id
            record_event(
                db,
                AuditAction.ASSIGNMENT_CLOSED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="assignment",
                target_id=assignment.id,
                metadata={"vehicle_id": vehicle_id, "user_id": assignment.user_id, "reason": "vehicle_deleted"}
            )

        rejected = await reject_pending(db, actor.tenant_id, "vehicle_deleted", vehicle_id=vehicle_id)

        deleted = transferred = 0
        for row in rows:
            if target is not None and row.quantity > 0:
                await transfer_locked(
                    db, actor, source, target, row.inventory_item_id, row.quantity,
                    reason="vehicle_deleted"
                )
                transferred += 1
            else:
                deleted += 1
            await db.delete(row)

        await db.delete(vehicle)
        await db.flush()

        summary = {
            "vehicle_id": vehicle_id,
            "closed_assignment_id": closed_id,
            "stock_rows_deleted": deleted,
            "stock_rows_transferred": transferred,
            "transferred_to": str(target) if target is not None else None,
            "rejected_transfer_ids": rejected,
        }
        record_event(
            db,
            AuditAction.VEHICLE_DELETED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="vehicle",
            target_id=vehicle_id,
            metadata=summary
        )
        return summary

    @staticmethod
    async def delete_user(db: AsyncSession, actor: Actor, user_id: str) -> dict:
        """
        Close every open assignment of a user, then delete the user.

        Stock lives on vehicles, not users, so it is left alone.

        Raises:
            Forbidden: If the caller targets themselves or the tenant owner
            NotFound: If the user does not exist in the tenant
            StorageUnavailable: If the plan kept going stale
        """
        enforce(actor, Operation.USER_DELETE)
        if user_id == actor.user_id:
            raise Forbidden("You cannot delete your own account", details={"user_id": user_id})

        for attempt in range(1, settings.lock_plan_attempts + 1):
            planned = {row.vehicle_id for row in await open_assignments_for_user(db, user_id)}
            keys = [user_key(user_id)] + [vehicle_key(vehicle_id) for vehicle_id in planned]

            try:
                async with serialized(db, keys):
                    summary = await CascadeDelete._delete_user_locked(db, actor, user_id, planned)
            except StalePlan:
                logger.info("Assignments of user %s changed while planning (attempt %d), re-planning", user_id, attempt)
                continue

            logger.info("User %s deleted (closed assignments: %s)", user_id, summary["closed_assignment_ids"])
            return summary

        raise StorageUnavailable(f"Could not obtain a stable lock plan for user {user_id}")

    @staticmethod
    async def _delete_user_locked(db: AsyncSession, actor: Actor, user_id: str, planned: Set[str]) -> dict:
        user = await get_or_404(db, User, user_id, actor.tenant_id, "User")
        if user.role == UserRole.OWNER:
            raise Forbidden("The tenant owner cannot be deleted", details={"user_id": user_id})

        assignments = await open_assignments_for_user(db, user_id)
        if {row.vehicle_id for row in assignments} - planned:
            raise StalePlan()

        now = utcnow()
        for assignment in assignments:
            close_row(assignment, end_for(assignment, now), actor.user_id)
        rejected = await reject_pending(db, actor.tenant_id, "technician_deleted", technician_id=user_id)

        await db.delete(user)
        await db.flush()

        summary = {
            "user_id": user_id,
            "closed_assignment_ids": [assignment.id for assignment in assignments],
            "rejected_transfer_ids": rejected,
        }
        record_event(
            db,
            AuditAction.USER_DELETED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="user",
            target_id=user_id,
            metadata={**summary, "role": user.role.value}
        )
        return summary
