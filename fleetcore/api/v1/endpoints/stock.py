"""
Stock API Endpoints.

Locations appear in paths as "warehouse:<id>" or "vehicle:<id>".
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.guards import Operation, require_operation
from fleetcore.core.reliability import call_with_storage_retry
from fleetcore.db.session import get_db
from fleetcore.domain.stock.location import LocationRef
from fleetcore.domain.stock.stock_ledger import StockLedger
from fleetcore.domain.stock.transfer_requests import TransferRequests
from fleetcore.models.stock_enums import PendingTransferStatus
from fleetcore.schemas.stock import (
    BelowMinimumResponse,
    StockAggregateResponse,
    StockLevelsSet,
    StockListResponse,
    StockQuantityResponse,
    StockQuantitySet,
    StockRowResponse,
    StockTransferLogEntry,
    StockTransferLogResponse,
    StockTransferRequest,
    StockTransferResponse,
    TransferRequestCreate,
    TransferRequestListResponse,
    TransferRequestReject,
    TransferRequestResponse,
)
from fleetcore.services.identity import Actor

router = APIRouter(prefix="/stock", tags=["Stock"])


@router.post("/transfer", response_model=StockTransferResponse)
async def transfer_stock(
    data: StockTransferRequest,
    actor: Actor = Depends(require_operation(Operation.STOCK_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Move stock between two locations.

    Returns 422 if the source holds less than the requested quantity;
    neither location changes in that case.
    """
    source, destination = await call_with_storage_retry(
        StockLedger.transfer,
        db, actor,
        LocationRef.parse(data.source),
        LocationRef.parse(data.destination),
        data.item_id,
        data.quantity,
        data.destination_minimum,
        data.destination_maximum,
        data.reason
    )
    return StockTransferResponse(
        source=StockRowResponse.from_row(source),
        destination=StockRowResponse.from_row(destination)
    )


@router.post("/transfer-requests", response_model=TransferRequestResponse, status_code=status.HTTP_201_CREATED)
async def request_transfer(
    data: TransferRequestCreate,
    actor: Actor = Depends(require_operation(Operation.STOCK_TRANSFER_REQUEST)),
    db: AsyncSession = Depends(get_db)
):
    """
    Ask the technician assigned to a vehicle to accept stock from a warehouse.

    Returns 422 if nobody is assigned to the vehicle.
    """
    request = await call_with_storage_retry(
        TransferRequests.request,
        db, actor, data.warehouse_id, data.vehicle_id, data.item_id, data.quantity, data.notes
    )
    return TransferRequestResponse.model_validate(request)


@router.get("/transfer-requests", response_model=TransferRequestListResponse)
async def list_transfer_requests(
    status_filter: Optional[PendingTransferStatus] = Query(
        PendingTransferStatus.PENDING, alias="status", description="Only requests in this status"
    ),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Technicians see requests addressed to them; managers see the whole tenant."""
    requests = await TransferRequests.list_requests(db, actor, status_filter)
    return TransferRequestListResponse(
        requests=[TransferRequestResponse.model_validate(request) for request in requests],
        total=len(requests)
    )


@router.get("/transfer-requests/{transfer_id}", response_model=TransferRequestResponse)
async def get_transfer_request(
    transfer_id: str = Path(..., description="Transfer request ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    request = await TransferRequests.get(db, actor, transfer_id)
    return TransferRequestResponse.model_validate(request)


@router.post("/transfer-requests/{transfer_id}/accept", response_model=TransferRequestResponse)
async def accept_transfer_request(
    transfer_id: str = Path(..., description="Transfer request ID"),
    actor: Actor = Depends(require_operation(Operation.STOCK_TRANSFER_RESPOND)),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a request addressed to the caller and move the stock.

    Returns 409 if it was already answered, 422 if the warehouse is short.
    """
    request = await call_with_storage_retry(TransferRequests.accept, db, actor, transfer_id)
    return TransferRequestResponse.model_validate(request)


@router.post("/transfer-requests/{transfer_id}/reject", response_model=TransferRequestResponse)
async def reject_transfer_request(
    data: Optional[TransferRequestReject] = None,
    transfer_id: str = Path(..., description="Transfer request ID"),
    actor: Actor = Depends(require_operation(Operation.STOCK_TRANSFER_RESPOND)),
    db: AsyncSession = Depends(get_db)
):
    reason = data.reason if data is not None else None
    request = await call_with_storage_retry(TransferRequests.reject, db, actor, transfer_id, reason)
    return TransferRequestResponse.model_validate(request)


@router.get("/low", response_model=StockListResponse)
async def low_stock(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Every stock row of the tenant below its minimum level."""
    rows = await StockLedger.low_stock(db, actor)
    return StockListResponse(rows=[StockRowResponse.from_row(row) for row in rows], total=len(rows))


@router.get("/transfers", response_model=StockTransferLogResponse)
async def transfer_log(
    item_id: Optional[str] = Query(None, description="Only transfers of this item"),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    transfers = await StockLedger.transfer_log(db, actor, item_id, limit)
    return StockTransferLogResponse(
        transfers=[StockTransferLogEntry.model_validate(entry) for entry in transfers],
        total=len(transfers)
    )


@router.get("/items/{item_id}/aggregate", response_model=StockAggregateResponse)
async def aggregate_item(
    item_id: str = Path(..., description="Inventory item ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    """Total quantity and value of an item across all locations."""
    return await StockLedger.aggregate_across_locations(db, actor, item_id)


@router.get("/{location}", response_model=StockListResponse)
async def list_location(
    location: str = Path(..., description="warehouse:<id> or vehicle:<id>"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    rows = await StockLedger.list_at_location(db, actor, LocationRef.parse(location))
    return StockListResponse(rows=[StockRowResponse.from_row(row) for row in rows], total=len(rows))


@router.get("/{location}/{item_id}", response_model=StockRowResponse)
async def get_stock_row(
    location: str = Path(..., description="warehouse:<id> or vehicle:<id>"),
    item_id: str = Path(..., description="Inventory item ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    row = await StockLedger.get(db, actor, LocationRef.parse(location), item_id)
    return StockRowResponse.from_row(row)


@router.put("/{location}/{item_id}", response_model=StockQuantityResponse)
async def set_quantity(
    data: StockQuantitySet,
    location: str = Path(..., description="warehouse:<id> or vehicle:<id>"),
    item_id: str = Path(..., description="Inventory item ID"),
    actor: Actor = Depends(require_operation(Operation.STOCK_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Set the quantity of an item at a location (manual count).

    Returns 422 for a negative quantity.
    """
    ref = LocationRef.parse(location)
    row = await call_with_storage_retry(
        StockLedger.set_quantity, db, actor, ref, item_id, data.quantity, data.prune_if_zero
    )
    return StockQuantityResponse(
        location=str(ref),
        item_id=item_id,
        quantity=data.quantity,
        row=StockRowResponse.from_row(row) if row is not None else None
    )


@router.put("/{location}/{item_id}/levels", response_model=StockRowResponse)
async def set_levels(
    data: StockLevelsSet,
    location: str = Path(..., description="warehouse:<id> or vehicle:<id>"),
    item_id: str = Path(..., description="Inventory item ID"),
    actor: Actor = Depends(require_operation(Operation.STOCK_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Set minimum / maximum stock levels (422 if maximum < minimum)."""
    row = await call_with_storage_retry(
        StockLedger.adjust_min_max, db, actor, LocationRef.parse(location), item_id, data.minimum, data.maximum
    )
    return StockRowResponse.from_row(row)


@router.get("/{location}/{item_id}/below-minimum", response_model=BelowMinimumResponse)
async def below_minimum(
    location: str = Path(..., description="warehouse:<id> or vehicle:<id>"),
    item_id: str = Path(..., description="Inventory item ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db)
):
    ref = LocationRef.parse(location)
    flag = await StockLedger.below_minimum(db, actor, ref, item_id)
    return BelowMinimumResponse(location=str(ref), item_id=item_id, below_minimum=flag)
