"""
Assignment Engine (Domain Logic).

Maintains the vehicle <-> technician assignment timeline.

Per vehicle: Unassigned -> Assigned(technician, since) -> Unassigned (close)
or -> Assigned(other technician, since) (reassign, atomically).

At most one open assignment per vehicle. open/close/reassign on the same
vehicle run under the vehicle:<id> key, and the partial unique index on
vehicle_assignments(vehicle_id) WHERE end_date IS NULL backs it up at the
storage layer. Closed rows are never edited again.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.clock import as_utc, utcnow
from fleetcore.core.exceptions import (
    AlreadyAssigned,
    AssignmentClosed,
    Forbidden,
    InvalidAssignment,
    NotFound,
)
from fleetcore.core.guards import Operation, enforce, is_permitted
from fleetcore.core.locks import user_key, vehicle_key
from fleetcore.db.transaction import serialized
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import TenantConfig, first_by_id, get_or_404, load_tenant_config

logger = logging.getLogger(__name__)


async def open_assignment_for_vehicle(db: AsyncSession, vehicle_id: str) -> Optional[VehicleAssignment]:
    result = await db.execute(
        select(VehicleAssignment)
        .where(
            VehicleAssignment.vehicle_id == vehicle_id,
            VehicleAssignment.end_date.is_(None)
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def open_assignments_for_user(db: AsyncSession, user_id: str) -> List[VehicleAssignment]:
    result = await db.execute(
        select(VehicleAssignment)
        .where(
            VehicleAssignment.user_id == user_id,
            VehicleAssignment.end_date.is_(None)
        )
        .order_by(VehicleAssignment.start_date, VehicleAssignment.pk)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def close_row(assignment: VehicleAssignment, end_date: datetime, closed_by: Optional[str]) -> None:
    """
    Set the end date of an open row.

    Raises:
        AssignmentClosed: If the row is already closed
        InvalidAssignment: If end_date is before the start date
    """
    if assignment.end_date is not None:
        raise AssignmentClosed(assignment.id)
    if end_date < as_utc(assignment.start_date):
        raise InvalidAssignment(
            "End date must not be before the assignment start date",
            details={
                "assignment_id": assignment.id,
                "start_date": as_utc(assignment.start_date).isoformat(),
                "end_date": end_date.isoformat()
            }
        )
    assignment.end_date = end_date
    assignment.closed_by = closed_by


class AssignmentEngine:

    @staticmethod
    async def open(
        db: AsyncSession,
        actor: Actor,
        vehicle_id: str,
        user_id: str,
        start_date: Optional[datetime] = None
    ) -> VehicleAssignment:
        """
        Open an assignment of a vehicle to a technician.

        Args:
            db: Database session
            actor: Resolved caller (manager, admin or owner)
            vehicle_id: Vehicle to assign
            user_id: Technician receiving the vehicle
            start_date: Start of the interval (defaults to now)

        Returns:
            The new open VehicleAssignment

        Raises:
            AlreadyAssigned: If the vehicle (or, under the single-vehicle
                policy, the technician) already has an open assignment
            InvalidAssignment: If the user is not assignable or the date is
                too far in the future
            NotFound: If the vehicle or user does not exist in the tenant
        """
        enforce(actor, Operation.ASSIGNMENT_OPEN)
        start = as_utc(start_date) if start_date else utcnow()

        async with serialized(db, [vehicle_key(vehicle_id), user_key(user_id)]):
            config = await load_tenant_config(db, actor.tenant_id)
            assignment = await AssignmentEngine._open_locked(db, actor, config, vehicle_id, user_id, start)

        logger.info("Vehicle %s assigned to %s (assignment %s)", vehicle_id, user_id, assignment.id)
        return assignment

    @staticmethod
    async def _open_locked(
        db: AsyncSession,
        actor: Actor,
        config: TenantConfig,
        vehicle_id: str,
        user_id: str,
        start: datetime
    ) -> VehicleAssignment:
        # 1. Referenced entities exist in the caller's tenant
        await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")
        user = await get_or_404(db, User, user_id, actor.tenant_id, "User")

        # 2. User is assignable
        if not user.is_active:
            raise InvalidAssignment("User account is inactive", details={"user_id": user_id})
        if user.role not in config.assignable_roles:
            raise InvalidAssignment(
                f"Users with role {user.role.value} cannot be assigned vehicles",
                details={
                    "user_id": user_id,
                    "role": user.role.value,
                    "assignable_roles": [role.value for role in config.assignable_roles]
                }
            )

        # 3. Reject clearly invalid dates
        horizon = utcnow() + timedelta(days=config.assignment_future_tolerance_days)
        if start > horizon:
            raise InvalidAssignment(
                f"Start date is more than {config.assignment_future_tolerance_days} days in the future",
                details={"start_date": start.isoformat()}
            )

        # 4. At most one open assignment per vehicle
        current = await open_assignment_for_vehicle(db, vehicle_id)
        if current is not None:
            raise AlreadyAssigned(
                "Vehicle is already assigned",
                details={
                    "vehicle_id": vehicle_id,
                    "assignment_id": current.id,
                    "user_id": current.user_id
                }
            )

        # 5. Optional: at most one open assignment per technician
        if config.single_vehicle_per_technician:
            held = await open_assignments_for_user(db, user_id)
            if held:
                raise AlreadyAssigned(
                    "Technician already has an assigned vehicle",
                    details={
                        "user_id": user_id,
                        "assignment_id": held[0].id,
                        "vehicle_id": held[0].vehicle_id
                    }
                )

        assignment = VehicleAssignment(
            tenant_id=actor.tenant_id,
            vehicle_id=vehicle_id,
            user_id=user_id,
            start_date=start,
            end_date=None,
            created_by=actor.user_id
        )
        db.add(assignment)
        try:
            await db.flush()
        except IntegrityError:
            # Partial unique index caught a writer outside this process
            raise AlreadyAssigned("Vehicle is already assigned", details={"vehicle_id": vehicle_id})

        record_event(
            db,
            AuditAction.ASSIGNMENT_OPENED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="assignment",
            target_id=assignment.id,
            metadata={
                "vehicle_id": vehicle_id,
                "user_id": user_id,
                "start_date": start.isoformat()
            }
        )
        return assignment

    @staticmethod
    async def close(
        db: AsyncSession,
        actor: Actor,
        assignment_id: str,
        end_date: Optional[datetime] = None
    ) -> VehicleAssignment:
        """
        Close an open assignment.

        Raises:
            NotFound: If the assignment does not exist in the tenant
            AssignmentClosed: If it is already closed
            InvalidAssignment: If end_date precedes the start date
        """
        enforce(actor, Operation.ASSIGNMENT_CLOSE)
        end = as_utc(end_date) if end_date else utcnow()

        # The vehicle of an assignment never changes, so it is safe to read before locking
        planned = await get_or_404(db, VehicleAssignment, assignment_id, actor.tenant_id, "Assignment")

        async with serialized(db, [vehicle_key(planned.vehicle_id)]):
            assignment = await get_or_404(db, VehicleAssignment, assignment_id, actor.tenant_id, "Assignment")
            close_row(assignment, end, actor.user_id)

            record_event(
                db,
                AuditAction.ASSIGNMENT_CLOSED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="assignment",
                target_id=assignment.id,
                metadata={
                    "vehicle_id": assignment.vehicle_id,
                    "user_id": assignment.user_id,
                    "end_date": end.isoformat()
                }
            )

        logger.info("Assignment %s closed", assignment_id)
        return assignment

    @staticmethod
    async def reassign(
        db: AsyncSession,
        actor: Actor,
        vehicle_id: str,
        new_user_id: str,
        effective_date: Optional[datetime] = None,
        expected_assignment_id: Optional[str] = None
    ) -> Tuple[Optional[VehicleAssignment], VehicleAssignment]:
        """
        Close whatever is open on the vehicle and open a new assignment, atomically.

        With no open assignment this is a plain open.

        Args:
            expected_assignment_id: When given, the vehicle's open assignment
                must still be this one

        Returns:
            (closed assignment or None, opened assignment)

        Raises:
            AlreadyAssigned: If the vehicle is already with new_user_id, or the
                single-vehicle policy blocks the new technician
            AssignmentClosed: If expected_assignment_id is no longer open
            InvalidAssignment: If effective_date precedes the current start date
        """
        enforce(actor, Operation.ASSIGNMENT_REASSIGN)
        effective = as_utc(effective_date) if effective_date else utcnow()

        async with serialized(db, [vehicle_key(vehicle_id), user_key(new_user_id)]):
            config = await load_tenant_config(db, actor.tenant_id)
            await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")

            closed = await open_assignment_for_vehicle(db, vehicle_id)
            if expected_assignment_id is not None and (closed is None or closed.id != expected_assignment_id):
                raise AssignmentClosed(expected_assignment_id)
            if closed is not None:
                if closed.user_id == new_user_id:
                    raise AlreadyAssigned(
                        "Vehicle is already assigned to this technician",
                        details={"vehicle_id": vehicle_id, "assignment_id": closed.id, "user_id": new_user_id}
                    )
                close_row(closed, effective, actor.user_id)
                await db.flush()

            opened = await AssignmentEngine._open_locked(db, actor, config, vehicle_id, new_user_id, effective)

            record_event(
                db,
                AuditAction.VEHICLE_REASSIGNED,
                tenant_id=actor.tenant_id,
                actor_id=actor.user_id,
                target_type="vehicle",
                target_id=vehicle_id,
                metadata={
                    "closed_assignment_id": closed.id if closed else None,
                    "previous_user_id": closed.user_id if closed else None,
                    "opened_assignment_id": opened.id,
                    "new_user_id": new_user_id,
                    "effective_date": effective.isoformat()
                }
            )

        logger.info(
            "Vehicle %s reassigned to %s (closed=%s, opened=%s)",
            vehicle_id, new_user_id, closed.id if closed else None, opened.id
        )
        return closed, opened

    @staticmethod
    async def reassign_assignment(
        db: AsyncSession,
        actor: Actor,
        assignment_id: str,
        new_user_id: str,
        effective_date: Optional[datetime] = None
    ) -> Tuple[Optional[VehicleAssignment], VehicleAssignment]:
        """Reassign the vehicle of an open assignment to another technician."""
        enforce(actor, Operation.ASSIGNMENT_REASSIGN)
        planned = await get_or_404(db, VehicleAssignment, assignment_id, actor.tenant_id, "Assignment")
        if planned.end_date is not None:
            raise AssignmentClosed(assignment_id)
        return await AssignmentEngine.reassign(
            db, actor, planned.vehicle_id, new_user_id, effective_date,
            expected_assignment_id=assignment_id
        )

    @staticmethod
    async def get(db: AsyncSession, actor: Actor, assignment_id: str) -> VehicleAssignment:
        """Fetch one assignment; technicians only see their own."""
        assignment = await get_or_404(db, VehicleAssignment, assignment_id, actor.tenant_id, "Assignment")
        if not is_permitted(actor.role, Operation.ASSIGNMENT_READ_ANY):
            enforce(actor, Operation.ASSIGNMENT_READ_OWN)
            if assignment.user_id != actor.user_id:
                raise NotFound("Assignment", assignment_id)
        return assignment

    @staticmethod
    async def current(db: AsyncSession, actor: Actor, vehicle_id: str) -> Optional[VehicleAssignment]:
        """The open assignment of a vehicle, or None."""
        enforce(actor, Operation.VEHICLE_READ)
        await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")
        return await open_assignment_for_vehicle(db, vehicle_id)

    @staticmethod
    async def history(
        db: AsyncSession,
        actor: Actor,
        vehicle_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[VehicleAssignment]:
        """
        Assignment history for a vehicle or a user, most recent first.

        History survives vehicle deletion (rows are closed, not removed), so
        the referenced entity is not required to still exist.
        """
        if (vehicle_id is None) == (user_id is None):
            raise ValueError("Pass exactly one of vehicle_id or user_id")

        query = select(VehicleAssignment).where(VehicleAssignment.tenant_id == actor.tenant_id)

        if not is_permitted(actor.role, Operation.ASSIGNMENT_READ_ANY):
            enforce(actor, Operation.ASSIGNMENT_READ_OWN)
            if user_id is not None and user_id != actor.user_id:
                raise Forbidden("Technicians may only read their own assignments")
            query = query.where(VehicleAssignment.user_id == actor.user_id)

        if vehicle_id is not None:
            query = query.where(VehicleAssignment.vehicle_id == vehicle_id)
        else:
            query = query.where(VehicleAssignment.user_id == user_id)

        query = query.order_by(
            VehicleAssignment.start_date.desc(),
            VehicleAssignment.created_at.desc(),
            VehicleAssignment.pk.desc()
        )
        result = await db.execute(query)
        return list(result.scalars().all())
