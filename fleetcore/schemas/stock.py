"""
Stock Ledger schemas.

Locations travel as text: "warehouse:<id>" or "vehicle:<id>".
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from fleetcore.domain.stock.location import LocationRef
from fleetcore.models.stock_enums import PendingTransferStatus


class StockTransferRequest(BaseModel):
    """Schema for moving stock between two locations."""
    source: str = Field(..., alias="from", description="Source location, e.g. vehicle:<id>")
    destination: str = Field(..., alias="to", description="Destination location, e.g. warehouse:<id>")
    item_id: str = Field(..., min_length=1)
    quantity: int
    destination_minimum: int = 0
    destination_maximum: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=255)

    class Config:
        populate_by_name = True


class StockQuantitySet(BaseModel):
    """Manual count correction."""
    quantity: int
    prune_if_zero: bool = False


class StockLevelsSet(BaseModel):
    minimum: int
    maximum: Optional[int] = None


class StockRowResponse(BaseModel):
    id: str
    inventory_item_id: str
    location: str
    quantity: int
    minimum_stock_level: int
    max_stock_level: Optional[int]
    below_minimum: bool
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "StockRowResponse":
        return cls(
            id=row.id,
            inventory_item_id=row.inventory_item_id,
            location=str(LocationRef.of_row(row)),
            quantity=row.quantity,
            minimum_stock_level=row.minimum_stock_level,
            max_stock_level=row.max_stock_level,
            below_minimum=row.is_below_minimum,
            updated_at=row.updated_at
        )


class StockQuantityResponse(BaseModel):
    """Result of a quantity set; `row` is None when the row was pruned."""
    location: str
    item_id: str
    quantity: int
    row: Optional[StockRowResponse]


class StockTransferResponse(BaseModel):
    source: StockRowResponse
    destination: StockRowResponse


class StockListResponse(BaseModel):
    rows: List[StockRowResponse]
    total: int


class BelowMinimumResponse(BaseModel):
    location: str
    item_id: str
    below_minimum: bool


class LocationQuantity(BaseModel):
    location: str
    quantity: int


class StockAggregateResponse(BaseModel):
    item_id: str
    total_quantity: int
    total_value: float
    locations: List[LocationQuantity]


class StockTransferLogEntry(BaseModel):
    id: str
    inventory_item_id: str
    from_location: str
    to_location: str
    quantity: int
    performed_by: Optional[str]
    reason: Optional[str]
    transferred_at: datetime

    class Config:
        from_attributes = True


class StockTransferLogResponse(BaseModel):
    transfers: List[StockTransferLogEntry]
    total: int


class TransferRequestCreate(BaseModel):
    """Ask the technician on a vehicle to accept stock from a warehouse."""
    warehouse_id: str = Field(..., min_length=1)
    vehicle_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    quantity: int
    notes: Optional[str] = None


class TransferRequestReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class TransferRequestResponse(BaseModel):
    id: str
    inventory_item_id: str
    from_warehouse_id: str
    to_vehicle_id: str
    quantity: int
    notes: Optional[str]
    requested_by: str
    assigned_technician_id: str
    status: PendingTransferStatus
    requested_at: datetime
    processed_at: Optional[datetime]
    rejection_reason: Optional[str]

    class Config:
        from_attributes = True


class TransferRequestListResponse(BaseModel):
    requests: List[TransferRequestResponse]
    total: int
