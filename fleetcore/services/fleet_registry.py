"""
Fleet registry service.

Vehicle registration (quota-checked), edits and telemetry readings.
Telemetry arrives from third-party GPS providers or from technicians; the
core only stores the last known reading.
"""

import logging
from typing import List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.clock import as_utc, utcnow
from fleetcore.core.exceptions import Forbidden, InvalidTelemetry
from fleetcore.core.guards import Operation, enforce, is_permitted
from fleetcore.core.locks import quota_key, vehicle_key
from fleetcore.db.transaction import serialized
from fleetcore.domain.assignments.assignment_engine import open_assignment_for_vehicle
from fleetcore.domain.quota.quota_ledger import QuotaLedger
from fleetcore.models.enums import ResourceClass
from fleetcore.models.vehicle import Vehicle
from fleetcore.schemas.vehicle import TelemetryReading, VehicleCreate, VehicleUpdate
from fleetcore.services.audit import AuditAction, record_event
from fleetcore.services.identity import Actor
from fleetcore.services.lookup import get_or_404, load_tenant_config

logger = logging.getLogger(__name__)

# Columns that cannot be cleared by an update
NON_NULLABLE_FIELDS = {"make", "model", "year", "tracking_enabled"}


async def create_vehicle(db: AsyncSession, actor: Actor, data: VehicleCreate) -> Vehicle:
    """
    Register a vehicle for the caller's tenant.

    The vehicle count is re-read and the insert performed under the
    tenant's vehicle quota key, so concurrent registrations cannot jointly
    exceed the tier.

    Args:
        db: Database session
        actor: Resolved caller
        data: Vehicle details

    Returns:
        Created vehicle

    Raises:
        QuotaExceeded: If the tier's vehicle limit is reached
    """
    enforce(actor, Operation.VEHICLE_CREATE)

    async with serialized(db, [quota_key(actor.tenant_id, ResourceClass.VEHICLE.value)]):
        await QuotaLedger.enforce(db, actor.tenant_id, ResourceClass.VEHICLE)

        vehicle = Vehicle(tenant_id=actor.tenant_id, **data.model_dump())
        db.add(vehicle)
        await db.flush()

        record_event(
            db,
            AuditAction.VEHICLE_CREATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="vehicle",
            target_id=vehicle.id,
            metadata={"vin": vehicle.vin, "display_name": vehicle.display_name}
        )

    logger.info("Vehicle %s registered for tenant %s", vehicle.id, actor.tenant_id)
    return vehicle


async def update_vehicle(db: AsyncSession, actor: Actor, vehicle_id: str, data: VehicleUpdate) -> Vehicle:
    """Apply the provided fields to a vehicle."""
    enforce(actor, Operation.VEHICLE_EDIT)

    changes = {
        key: value for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key not in NON_NULLABLE_FIELDS
    }

    async with serialized(db, [vehicle_key(vehicle_id)]):
        vehicle = await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")
        for field, value in changes.items():
            setattr(vehicle, field, value)
        await db.flush()

        record_event(
            db,
            AuditAction.VEHICLE_UPDATED,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="vehicle",
            target_id=vehicle_id,
            metadata={"updated_fields": sorted(changes)}
        )

    return vehicle


def validate_reading(reading: TelemetryReading) -> None:
    """
    Raises:
        InvalidTelemetry: If the reading is empty or out of range
    """
    has_position = reading.latitude is not None or reading.longitude is not None
    if reading.mileage is None and not has_position:
        raise InvalidTelemetry("Reading carries neither mileage nor position")
    if reading.mileage is not None and reading.mileage < 0:
        raise InvalidTelemetry("Mileage must not be negative", details={"mileage": reading.mileage})
    if has_position:
        if reading.latitude is None or reading.longitude is None:
            raise InvalidTelemetry("Latitude and longitude must be supplied together")
        if not -90 <= reading.latitude <= 90 or not -180 <= reading.longitude <= 180:
            raise InvalidTelemetry(
                "Position out of range",
                details={"latitude": reading.latitude, "longitude": reading.longitude}
            )


async def record_telemetry(db: AsyncSession, actor: Actor, vehicle_id: str, reading: TelemetryReading) -> Vehicle:
    """
    Store a mileage and/or position reading.

    Technicians may only report for the vehicle they currently hold.
    Positions are only stored when tracking is enabled for both the tenant
    and the vehicle.

    Raises:
        InvalidTelemetry: If the reading is malformed, lowers the odometer,
            or carries a position while tracking is disabled
        Forbidden: If a technician reports for a vehicle they do not hold
    """
    enforce(actor, Operation.VEHICLE_TELEMETRY)
    validate_reading(reading)

    async with serialized(db, [vehicle_key(vehicle_id)]):
        vehicle = await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")

        if not is_permitted(actor.role, Operation.VEHICLE_EDIT):
            current = await open_assignment_for_vehicle(db, vehicle_id)
            if current is None or current.user_id != actor.user_id:
                raise Forbidden("Technicians may only report telemetry for their assigned vehicle")

        if reading.mileage is not None:
            if reading.mileage < vehicle.mileage:
                raise InvalidTelemetry(
                    "Mileage cannot decrease",
                    details={"current": vehicle.mileage, "reported": reading.mileage}
                )
            vehicle.mileage = reading.mileage

        if reading.latitude is not None:
            config = await load_tenant_config(db, actor.tenant_id)
            if not (config.tracking_enabled and vehicle.tracking_enabled):
                raise InvalidTelemetry("Location tracking is disabled for this vehicle")
            vehicle.last_latitude = reading.latitude
            vehicle.last_longitude = reading.longitude
            vehicle.last_location_at = as_utc(reading.recorded_at) if reading.recorded_at else utcnow()

        await db.flush()
        record_event(
            db,
            AuditAction.VEHICLE_TELEMETRY,
            tenant_id=actor.tenant_id,
            actor_id=actor.user_id,
            target_type="vehicle",
            target_id=vehicle_id,
            metadata=reading.model_dump(mode="json", exclude_none=True)
        )

    return vehicle


async def get_vehicle(db: AsyncSession, actor: Actor, vehicle_id: str) -> Vehicle:
    enforce(actor, Operation.VEHICLE_READ)
    return await get_or_404(db, Vehicle, vehicle_id, actor.tenant_id, "Vehicle")


async def list_vehicles(db: AsyncSession, actor: Actor, page: int = 1, page_size: int = 50) -> Tuple[List[Vehicle], int]:
    """
    List the tenant's vehicles, oldest first.

    Returns:
        (vehicles on the page, total count)
    """
    enforce(actor, Operation.VEHICLE_READ)

    total_result = await db.execute(
        select(func.count(Vehicle.pk)).where(Vehicle.tenant_id == actor.tenant_id)
    )
    total = total_result.scalar() or 0

    result = await db.execute(
        select(Vehicle)
        .where(Vehicle.tenant_id == actor.tenant_id)
        .order_by(Vehicle.created_at, Vehicle.pk)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
