"""
Vehicle API Endpoints.

Registration, edits, telemetry and cascade deletion.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.domain.cascade.cascade_delete import CascadeDelete, DeleteStock, TransferTo
from fleetcore.domain.stock.location import LocationRef
from fleetcore.schemas.vehicle import (
    TelemetryReading,
    VehicleCreate,
    VehicleDeleteResponse,
    VehicleListResponse,
    VehicleResponse,
    VehicleUpdate,
)
from fleetcore.services import fleet_registry
from fleetcore.services.identity import Actor

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.post("", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    data: VehicleCreate,
    actor: Actor = Depends(require_operation(Operation.VEHICLE_CREATE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a vehicle.

    Returns 402 when the subscription tier's vehicle limit is reached.
    """
    vehicle = await call_with_storage_retry(fleet_registry.create_vehicle, db, actor, data)
    return VehicleResponse.model_validate(vehicle)


@router.get("", response_model=VehicleListResponse)
async def list_vehicles(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    vehicles, total = await fleet_registry.list_vehicles(db, actor, page, page_size)
    return VehicleListResponse(
        vehicles=[VehicleResponse.model_validate(vehicle) for vehicle in vehicles],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    vehicle = await fleet_registry.get_vehicle(db, actor, vehicle_id)
    return VehicleResponse.model_validate(vehicle)


@router.patch("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    data: VehicleUpdate,
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(require_operation(Operation.VEHICLE_EDIT)),
    db: AsyncSession = Depends(get_db)
):
    vehicle = await call_with_storage_retry(fleet_registry.update_vehicle, db, actor, vehicle_id, data)
    return VehicleResponse.model_validate(vehicle)


@router.post("/{vehicle_id}/telemetry", response_model=VehicleResponse)
async def record_telemetry(
    reading: TelemetryReading,
    vehicle_id: str = Path(..., description="Vehicle ID"),
    actor: Actor = Depends(require_operation(Operation.VEHICLE_TELEMETRY)),
    db: AsyncSession = Depends(get_db)
):
    """Store a mileage and/or position reading."""
    vehicle = await call_with_storage_retry(fleet_registry.record_telemetry, db, actor, vehicle_id, reading)
    return VehicleResponse.model_validate(vehicle)


@router.delete("/{vehicle_id}", response_model=VehicleDeleteResponse)
async def delete_vehicle(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    transfer_to: Optional[str] = Query(
        None, description="Move the vehicle's stock here (warehouse:<id> or vehicle:<id>) instead of deleting it"
    ),
    actor: Actor = Depends(require_operation(Operation.VEHICLE_DELETE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a vehicle in one transaction.

    The open assignment is closed (kept as history), stock on the vehicle is
    deleted or transferred, and the vehicle row is removed.
    """
    disposition = TransferTo(LocationRef.parse(transfer_to)) if transfer_to else DeleteStock()
    summary = await call_with_storage_retry(CascadeDelete.delete_vehicle, db, actor, vehicle_id, disposition)
    return VehicleDeleteResponse(**summary)
